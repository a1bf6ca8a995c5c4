"""
Listening session: connects the heart-rate feed and the playback poller to the
recommendation pipeline.
"""

import asyncio
import logging
from typing import AsyncIterable, List, Optional, Set

from heartqueue.config import Settings, UserSettingsStore
from heartqueue.exceptions import CatalogError
from heartqueue.models import PlaybackState

from .services.analysis_client import AnalysisProxyClient
from .services.dedup_service import DedupService
from .services.fallback_service import SimilarityFallbackService
from .services.familiarity_service import FamiliarityService
from .services.recommendation_service import RecommendationService
from .services.search_service import CatalogSearchService
from .services.spotify_service import SpotifyService, StaticTokenProvider

logger = logging.getLogger(__name__)


class ListeningSession:
    """
    Runs triggers as background tasks so playback polling never waits on the
    pipeline. Track changes fire forced triggers, heart-rate samples unforced ones.
    """

    def __init__(
        self,
        catalog,
        recommender: RecommendationService,
        familiarity: FamiliarityService,
        playback: PlaybackState,
        poll_interval: float = 3.0,
        sleep=asyncio.sleep,
        closeables: Optional[List] = None,
    ):  # pylint: disable=too-many-arguments
        self.catalog = catalog
        self.recommender = recommender
        self.familiarity = familiarity
        self.playback = playback
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.closeables = closeables or []

        self.last_bpm: Optional[int] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def connect(self):
        """Load the familiarity pool and market, then start polling playback"""
        await self.familiarity.load()
        try:
            await self.catalog.load_market()
        except CatalogError as e:
            logger.warning("Could not load user market, keeping %s: %s", self.catalog.market, str(e))
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Session connected")

    async def _poll_loop(self):
        while True:
            await self.refresh_playback()
            await self.sleep(self.poll_interval)

    async def refresh_playback(self) -> bool:
        """Pull the playback snapshot. Returns True when the playing track changed."""
        try:
            snapshot = await self.catalog.get_playback_snapshot()
        except CatalogError as e:
            logger.warning("Playback poll failed: %s", str(e))
            return False

        changed = self.playback.apply(snapshot)
        if changed:
            track = self.playback.current_track
            logger.info("Now playing: '%s' by %s", track.name, track.artist_names)
            if self.last_bpm is not None:
                self._spawn(self.recommender.trigger(self.last_bpm, force=True))
        return changed

    def on_heart_rate(self, bpm: int) -> asyncio.Task:
        self.last_bpm = bpm
        return self._spawn(self.recommender.trigger(bpm))

    async def consume(self, samples: AsyncIterable[int]):
        """Feed heart-rate samples until the iterable is exhausted"""
        async for bpm in samples:
            self.on_heart_rate(bpm)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        """Wait for every spawned trigger to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def disconnect(self):
        """Stop polling, cancel any running pipeline and release clients"""
        if self._poll_task is not None:
            self._poll_task.cancel()
        self.recommender.cancel()
        for task in list(self._tasks):
            task.cancel()

        pending = [task for task in [self._poll_task, *self._tasks] if task is not None]
        await asyncio.gather(*pending, return_exceptions=True)
        self._poll_task = None
        self._tasks.clear()

        for resource in self.closeables:
            await resource.aclose()
        logger.info("Session disconnected")


def build_session(settings: Settings) -> ListeningSession:
    """Wire a session from service configuration"""
    catalog = SpotifyService(StaticTokenProvider(settings.spotify_access_token), base_url=settings.spotify_api_base)
    proxy = AnalysisProxyClient(settings.analysis_proxy_url)
    playback = PlaybackState()

    dedup = DedupService(catalog, playback)
    familiarity = FamiliarityService(catalog)
    search = CatalogSearchService(catalog, dedup, familiarity=familiarity)
    fallback = SimilarityFallbackService(
        proxy,
        catalog,
        dedup,
        poll_interval=settings.poll_interval_seconds,
        max_polls=settings.max_polls,
    )
    recommender = RecommendationService(
        catalog,
        UserSettingsStore(settings.settings_path),
        playback,
        dedup,
        search,
        fallback,
        cooldown_seconds=settings.cooldown_seconds,
        max_retries=settings.max_retries,
        log_capacity=settings.event_log_capacity,
    )
    return ListeningSession(
        catalog,
        recommender,
        familiarity,
        playback,
        poll_interval=settings.playback_poll_interval_seconds,
        closeables=[catalog, proxy],
    )
