"""
Similarity fallback stage.

Used when the catalog search finds nothing. Asks the analysis proxy for tracks
similar to the seed, polls while the seed is still being analyzed, then
enriches the candidates and returns the first one that is not a duplicate.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, NamedTuple, Optional

from heartqueue.exceptions import AnalysisProxyDecodeError, AnalysisProxyError, CatalogError
from heartqueue.models import AnalyzeResponse, AnalyzeStatus, RecommendationRequest, RecommendationState, Track

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecommendationState, Optional[str]], None]


class FallbackResult(str, Enum):
    FOUND = "found"
    DUPLICATES = "duplicates"
    EMPTY = "empty"
    ERROR = "error"
    TIMEOUT = "timeout"


class FallbackOutcome(NamedTuple):
    result: FallbackResult
    track: Optional[Track] = None
    detail: Optional[str] = None


def _ignore_state(state: RecommendationState, detail: Optional[str] = None):
    pass


class SimilarityFallbackService:
    """
    Runs one fallback attempt against the analysis proxy.

    ``max_polls`` bounds the analysis polling loop; None polls until the
    proxy answers or the run is cancelled.
    """

    def __init__(
        self,
        proxy,
        catalog,
        dedup,
        poll_interval: float = 5.0,
        max_polls: Optional[int] = 60,
        sleep=asyncio.sleep,
    ):
        self.proxy = proxy
        self.catalog = catalog
        self.dedup = dedup
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.sleep = sleep

    async def _query(self, request: RecommendationRequest) -> AnalyzeResponse:
        return await self.proxy.analyze(request.seed_track_id, request.tempo, request.genres)

    async def _poll(self, request: RecommendationRequest, on_state: StateCallback) -> Optional[AnalyzeResponse]:
        """Re-query every poll_interval seconds until the proxy stops answering 'analyzing'"""
        polls = 0
        while self.max_polls is None or polls < self.max_polls:
            await self.sleep(self.poll_interval)
            polls += 1
            on_state(RecommendationState.POLLING, f"waiting: analysis in progress (poll {polls})")
            try:
                response = await self._query(request)
            except AnalysisProxyDecodeError as e:
                logger.error("Undecodable poll response for %s: %s", request.seed_track_id, str(e))
                continue
            except AnalysisProxyError as e:
                logger.warning("Poll for %s failed: %s", request.seed_track_id, str(e))
                continue

            if response.status != AnalyzeStatus.ANALYZING:
                logger.info("Analysis finished for %s after %d polls", request.seed_track_id, polls)
                return response

        logger.warning("Gave up polling analysis for %s after %d polls", request.seed_track_id, polls)
        return None

    async def _first_unique(self, track_ids: List[str]) -> FallbackOutcome:
        try:
            tracks = await self.catalog.get_tracks(track_ids)
        except CatalogError as e:
            logger.warning("Enriching %d candidates failed: %s", len(track_ids), str(e))
            return FallbackOutcome(FallbackResult.ERROR, detail=f"error: enrichment failed ({e})")

        if not tracks:
            return FallbackOutcome(FallbackResult.EMPTY, detail="error: no valid tracks")

        for index, track in enumerate(tracks, start=1):
            logger.debug("Candidate %d. '%s' by %s", index, track.name, track.artist_names)
            if await self.dedup.is_duplicate(track):
                logger.info("Track '%s' is duplicate, checking next", track.name)
                continue
            logger.info("Track '%s' is valid", track.name)
            return FallbackOutcome(FallbackResult.FOUND, track=track)

        return FallbackOutcome(
            FallbackResult.DUPLICATES, detail=f"all {len(tracks)} candidates are duplicates"
        )

    async def run(self, request: RecommendationRequest, on_state: Optional[StateCallback] = None) -> FallbackOutcome:
        """Request similar tracks for the seed and return the first non-duplicate"""
        on_state = on_state or _ignore_state
        on_state(RecommendationState.FALLBACK_REQUESTED, None)
        logger.info("Requesting similar tracks for seed %s", request.seed_track_id)

        try:
            response = await self._query(request)
        except AnalysisProxyDecodeError as e:
            logger.error("Undecodable analysis proxy response: %s", str(e))
            return FallbackOutcome(FallbackResult.ERROR, detail=f"error: {e}")
        except AnalysisProxyError as e:
            logger.warning("Analysis proxy request failed: %s", str(e))
            return FallbackOutcome(FallbackResult.ERROR, detail=f"error: {e}")

        if response.status == AnalyzeStatus.ANALYZING:
            logger.info("Seed %s is being analyzed, polling", request.seed_track_id)
            on_state(RecommendationState.ANALYZING, "waiting: analysis in progress")
            response = await self._poll(request, on_state)
            if response is None:
                return FallbackOutcome(FallbackResult.TIMEOUT, detail="error: analysis polling timed out")

        if response.status == AnalyzeStatus.ERROR:
            return FallbackOutcome(FallbackResult.ERROR, detail=f"error: {response.error}")

        track_ids = response.track_ids or []
        if not track_ids:
            logger.info("Analysis proxy returned no candidates for %s", request.seed_track_id)
            return FallbackOutcome(FallbackResult.EMPTY, detail="error: no track IDs in response")

        logger.info("Analysis proxy returned %d candidates", len(track_ids))
        return await self._first_unique(track_ids)
