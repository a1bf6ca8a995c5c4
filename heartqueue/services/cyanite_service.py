"""
Cyanite Service

GraphQL client for the audio-similarity provider used by the analysis proxy.
"""

import hashlib
import hmac
import logging
from typing import List, Optional

import httpx

from heartqueue.exceptions import SimilarityServiceError
from heartqueue.models import TempoWindow

logger = logging.getLogger(__name__)

ANALYSIS_COMPLETED_EVENT = "SpotifyTrackAnalysisCompletedEvent"
MAX_SIMILAR_TRACKS = 50

SIMILAR_TRACKS_QUERY = """
query SimilarTracksQuery($trackId: ID!) {
  spotifyTrack(id: $trackId) {
    ... on SpotifyTrack {
      similarTracks(target: { spotify: {} }%s, first: %d) {
        __typename
        ... on SimilarTracksConnection {
          edges {
            node {
              ... on SpotifyTrack { id }
            }
          }
        }
        ... on SimilarTracksError { message }
      }
    }
  }
}
"""

ENQUEUE_MUTATION = """
mutation SpotifyTrackEnqueue($trackId: ID!) {
  spotifyTrackEnqueue(input: { spotifyTrackId: $trackId }) { __typename }
}
"""


def build_filter(tempo: Optional[TempoWindow] = None, genres: Optional[List[str]] = None) -> str:
    """Render the experimental filter argument. Genre enums must not be quoted."""
    parts = []
    if tempo is not None:
        parts.append(f"bpm: {{ range: {{ start: {tempo.start}, end: {tempo.end} }} }}")
    if genres:
        parts.append(f"genre: {{ list: [{', '.join(genres)}] }}")
    if not parts:
        return ""
    return f", experimental_filter: {{ {', '.join(parts)} }}"


def is_filter_error(error: Exception) -> bool:
    message = str(error)
    return "MusicalGenre" in message or "filter" in message


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a webhook body against its hex HMAC-SHA256 signature"""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


class CyaniteService:
    """
    A service class for similar-track lookups and analysis enqueueing.
    """

    def __init__(
        self,
        token: Optional[str],
        api_url: str = "https://api.cyanite.ai/graphql",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.token = token
        self.api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def _graphql(self, query: str, variables: dict) -> dict:
        try:
            response = await self._client.post(
                self.api_url,
                json={"query": query, "variables": variables},
                headers={"Authorization": f"Bearer {self.token}"},
            )
            payload = response.json()
        except httpx.HTTPError as e:
            raise SimilarityServiceError(f"Similarity request failed: {e}") from e
        except ValueError as e:
            raise SimilarityServiceError(f"Similarity response is not JSON (HTTP {response.status_code})") from e

        if not isinstance(payload, dict):
            raise SimilarityServiceError(
                f"Unexpected similarity response shape (HTTP {response.status_code}): {type(payload).__name__}"
            )
        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            message = first.get("message") if isinstance(first, dict) else None
            raise SimilarityServiceError(str(message or first or "unknown error"))
        if not response.is_success:
            raise SimilarityServiceError(f"Similarity request returned HTTP {response.status_code}")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise SimilarityServiceError("Unexpected similarity response shape: data is not an object")
        return data

    async def similar_tracks(
        self, track_id: str, tempo: Optional[TempoWindow] = None, genres: Optional[List[str]] = None
    ) -> List[str]:
        """
        Get ids of tracks similar to the seed, excluding the seed itself.

        Returns an empty list when the seed is unknown to the provider.
        """
        query = SIMILAR_TRACKS_QUERY % (build_filter(tempo, genres), MAX_SIMILAR_TRACKS)
        data = await self._graphql(query, {"trackId": track_id})

        seed = data.get("spotifyTrack")
        if not seed:
            return []

        try:
            similar = seed.get("similarTracks") or {}
            if similar.get("__typename") == "SimilarTracksError":
                raise SimilarityServiceError(similar.get("message", "similar tracks error"))

            ids = []
            for edge in similar.get("edges") or []:
                node_id = (edge.get("node") or {}).get("id")
                if node_id and node_id != track_id:
                    ids.append(node_id)
        except (AttributeError, TypeError) as e:
            raise SimilarityServiceError(f"Unexpected similar tracks shape: {e}") from e
        logger.info("Found %d similar tracks for %s", len(ids), track_id)
        return ids

    async def enqueue_analysis(self, track_id: str):
        logger.info("Track %s unknown. Enqueueing analysis...", track_id)
        await self._graphql(ENQUEUE_MUTATION, {"trackId": track_id})
