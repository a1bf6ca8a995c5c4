"""
Recommendation orchestrator.

Drives one pipeline run per seed track: catalog search first, similarity
fallback when the search is exhausted, then commits the winning track to the
playback queue. Owns the session history, the retry counters, the in-flight
flag and the diagnostic event log.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Dict, List, Optional

from heartqueue.exceptions import CatalogError
from heartqueue.models import (
    PlaybackState,
    RecommendationEvent,
    RecommendationRequest,
    RecommendationState,
    Track,
)
from heartqueue.services.fallback_service import FallbackResult
from heartqueue.services.zone_service import target_for

logger = logging.getLogger(__name__)

TRACK_URI_PREFIX = "spotify:track:"
NO_SUITABLE_TRACK = "no suitable track"


def seed_id_for(track: Track) -> str:
    if track.uri.startswith(TRACK_URI_PREFIX):
        return track.uri[len(TRACK_URI_PREFIX) :]
    return track.id


class RecommendationService:
    """
    Orchestrates the recommendation pipeline and enforces its guards:
    one run in flight, a cooldown between unforced triggers, one queued
    recommendation at a time, and no searches below zone 2.
    """

    def __init__(
        self,
        catalog,
        settings_store,
        playback: PlaybackState,
        dedup,
        search,
        fallback,
        clock=time.monotonic,
        cooldown_seconds: float = 15.0,
        max_retries: int = 3,
        log_capacity: int = 50,
    ):  # pylint: disable=too-many-arguments
        self.catalog = catalog
        self.settings_store = settings_store
        self.playback = playback
        self.dedup = dedup
        self.search = search
        self.fallback = fallback
        self.clock = clock
        self.cooldown_seconds = cooldown_seconds
        self.max_retries = max_retries

        self.retry_counts: Dict[str, int] = {}
        self._events: deque = deque(maxlen=log_capacity)
        self._in_flight = False
        self._last_attempt: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def events(self) -> List[RecommendationEvent]:
        return list(self._events)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _transition(self, event: RecommendationEvent, state: RecommendationState, detail: Optional[str] = None):
        logger.debug("Recommendation %s -> %s (%s)", event.state.value, state.value, detail or "")
        event.state = state
        if detail is not None:
            event.detail = detail

    def _blocked(self, force: bool) -> Optional[str]:
        """Return why a trigger is dropped, or None if it may proceed"""
        if self.playback.current_track is None:
            return "nothing playing"
        if self.playback.has_queued_recommendation():
            return "a recommendation is already queued"
        if self._in_flight:
            return "a recommendation is in flight"
        if not force and self._last_attempt is not None:
            if self.clock() - self._last_attempt < self.cooldown_seconds:
                return "cooldown"
        return None

    async def trigger(self, bpm: int, force: bool = False) -> Optional[RecommendationEvent]:
        """
        Handle a trigger from a heart-rate sample or a track change.

        Args:
            bpm: Current heart rate
            force: True for track changes, which bypass the cooldown

        Returns:
            The event recorded for this trigger, or None if the trigger was dropped
        """
        settings = self.settings_store.load()
        if not settings.auto_recommend:
            return None

        reason = self._blocked(force)
        if reason is not None:
            logger.debug("Trigger dropped: %s", reason)
            return None

        target = target_for(bpm, settings)
        if target.zone < 2:
            logger.info("Rec Engine: Skipping (Zone %d)", target.zone)
            return None

        if not target.genres:
            event = RecommendationEvent(
                zone=target.zone,
                bpm=bpm,
                state=RecommendationState.SKIPPED,
                detail=f"skipped: no genres selected for {target.strategy}",
            )
            self._events.append(event)
            self._last_attempt = self.clock()
            return event

        seed_track = self.playback.current_track
        request = RecommendationRequest(
            seed_track_id=seed_id_for(seed_track),
            zone=target.zone,
            tempo=target.tempo,
            genres=target.genres,
        )
        event = RecommendationEvent(zone=target.zone, bpm=bpm, genres=target.genres)
        self._events.append(event)

        logger.info(
            "Rec Engine: Triggering track find (%s), heart rate %d -> tempo %d-%d, seed '%s' by %s",
            target.strategy,
            bpm,
            target.tempo.start,
            target.tempo.end,
            seed_track.name,
            seed_track.artist_names,
        )

        self._in_flight = True
        self._last_attempt = self.clock()
        self._task = asyncio.create_task(self._run(request, event))
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        finally:
            self._task = None
            self._in_flight = False
        return event

    def cancel(self):
        """Cancel the running pipeline, including any analysis polling"""
        if self._task is not None and not self._task.done():
            logger.info("Cancelling recommendation for running pipeline")
            self._task.cancel()

    async def _run(self, request: RecommendationRequest, event: RecommendationEvent):
        seed = request.seed_track_id
        try:
            self.dedup.begin_run()
            self._transition(event, RecommendationState.SEARCHING)
            track = await self.search.find_track(request.genres)

            if track is None:
                logger.info("Catalog search exhausted, falling back to similarity search")
                self._transition(event, RecommendationState.EXHAUSTED)
                track = await self._run_fallback(request, event)

            if track is not None:
                self._transition(event, RecommendationState.FOUND)
                await self._commit(track, event)
        except asyncio.CancelledError:
            self._transition(event, RecommendationState.CANCELLED, "cancelled")
            raise
        except Exception as e:  # pylint: disable=broad-except
            logger.exception("Recommendation pipeline failed for seed %s", seed)
            self._transition(event, RecommendationState.ERROR, f"error: {e}")
        finally:
            self.retry_counts.pop(seed, None)

    async def _run_fallback(self, request: RecommendationRequest, event: RecommendationEvent) -> Optional[Track]:
        seed = request.seed_track_id

        def on_state(state: RecommendationState, detail: Optional[str] = None):
            self._transition(event, state, detail)

        while True:
            request = request.model_copy(update={"attempt": self.retry_counts.get(seed, 0)})
            outcome = await self.fallback.run(request, on_state=on_state)

            if outcome.result == FallbackResult.FOUND:
                return outcome.track

            if outcome.result == FallbackResult.DUPLICATES:
                retries = self.retry_counts.get(seed, 0) + 1
                self.retry_counts[seed] = retries
                if retries >= self.max_retries:
                    logger.info("Exceeded retry limit for seed %s, could not find suitable track", seed)
                    self._transition(event, RecommendationState.ABANDONED, NO_SUITABLE_TRACK)
                    return None
                logger.info("All candidates were duplicates, retrying (attempt %d)", retries)
                event.detail = f"retrying: all tracks are duplicates (attempt {retries})"
                continue

            if outcome.result == FallbackResult.ERROR:
                self._transition(event, RecommendationState.ERROR, outcome.detail)
            else:
                logger.info("Similarity fallback gave up for seed %s: %s", seed, outcome.detail)
                self._transition(event, RecommendationState.ABANDONED, NO_SUITABLE_TRACK)
            return None

    async def _commit(self, track: Track, event: RecommendationEvent):
        """Record the track in session history, then enqueue it"""
        self.dedup.accept(track)
        try:
            await self.catalog.add_to_queue(track.uri)
        except CatalogError as e:
            logger.warning("Enqueue of '%s' failed: %s", track.name, str(e))
            self._transition(event, RecommendationState.ERROR, f"error: enqueue failed ({e})")
            return

        self.playback.auto_recommended_uris.add(track.uri)
        event.found_track = track.name
        self._transition(event, RecommendationState.COMMITTED, "success")
        logger.info("Selected track: '%s' by %s", track.name, track.artist_names)
