"""
Client for the analysis proxy's analyze endpoint.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from heartqueue.exceptions import AnalysisProxyDecodeError, AnalysisProxyTransportError
from heartqueue.models import AnalyzeResponse, AnalyzeStatus, TempoWindow

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/api/analyze"


class AnalysisProxyClient:
    """
    Queries the analysis proxy for similar tracks of a seed track.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    @staticmethod
    def build_params(
        track_id: str, tempo: Optional[TempoWindow] = None, genres: Optional[List[str]] = None
    ) -> dict:
        params = {"trackId": track_id}
        if tempo is not None:
            params["bpmStart"] = tempo.start
            params["bpmEnd"] = tempo.end
        if genres:
            params["genres"] = ",".join(genres)
        return params

    async def analyze(
        self, track_id: str, tempo: Optional[TempoWindow] = None, genres: Optional[List[str]] = None
    ) -> AnalyzeResponse:
        """
        Ask the proxy for similar tracks.

        Raises:
            AnalysisProxyTransportError: request failed or timed out
            AnalysisProxyDecodeError: payload is not a recognised analyze response
        """
        params = self.build_params(track_id, tempo, genres)
        try:
            response = await self._client.get(f"{self.base_url}{ANALYZE_PATH}", params=params)
        except httpx.HTTPError as e:
            raise AnalysisProxyTransportError(f"Analysis proxy request failed: {e}") from e

        logger.debug("Analysis proxy response [%d]: %s", response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            if not response.is_success:
                raise AnalysisProxyTransportError(f"proxy failure ({response.status_code})") from e
            raise AnalysisProxyDecodeError("parse failure") from e

        if not isinstance(payload, dict) or "status" not in payload:
            if not response.is_success:
                raise AnalysisProxyTransportError(f"proxy failure ({response.status_code})")
            raise AnalysisProxyDecodeError("stale server version: response has no status field")

        # Older proxies answer with a single id
        if payload.get("status") == "success" and "trackIds" not in payload and payload.get("trackId"):
            payload = {"status": "success", "trackIds": [payload["trackId"]]}

        try:
            result = AnalyzeResponse.model_validate(payload)
        except ValidationError as e:
            raise AnalysisProxyDecodeError(f"unexpected response schema: {payload.get('status')}") from e

        if result.status == AnalyzeStatus.ERROR and not result.error:
            result.error = f"proxy failure ({response.status_code})"
        return result
