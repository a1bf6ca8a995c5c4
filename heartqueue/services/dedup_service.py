"""
Duplicate detection for recommendation candidates.

Track identity is a normalized "title|artists" key rather than the catalog id,
because the same song is released under several ids (radio edit, remix, ...).
"""

import logging
from typing import List, Optional, Set

from heartqueue.exceptions import CatalogError
from heartqueue.models import PlaybackState, Track

logger = logging.getLogger(__name__)

TITLE_SUFFIXES = (
    " - Radio Edit",
    " - Remix",
    " - Extended Mix",
    " - Original Mix",
    " - Edit",
    " - Single Version",
    " - Album Version",
    " - Clean Version",
    " - Explicit",
    " - Instrumental",
    " - Acoustic",
    " - Live",
)


def normalize_track_name(name: str) -> str:
    """Trim, strip at most one release suffix and lower-case a track title"""
    normalized = name.strip()
    lowered = normalized.lower()
    for suffix in TITLE_SUFFIXES:
        if lowered.endswith(suffix.lower()):
            normalized = normalized[: -len(suffix)]
            break
    return normalized.strip().lower()


def track_key(name: str, artist_names: str) -> str:
    return f"{normalize_track_name(name)}|{artist_names.lower()}"


def key_for(track: Track) -> str:
    return track_key(track.name, track.artist_names)


class DedupService:
    """
    Checks candidates against session history, the playing track, the queue
    and the listener's recently played window.
    """

    def __init__(self, catalog, playback: PlaybackState, recent_limit: int = 50):
        self.catalog = catalog
        self.playback = playback
        self.recent_limit = recent_limit
        self.session_history: Set[str] = set()
        self._recent: Optional[List[Track]] = None

    def begin_run(self):
        """Forget the cached recently played window so the next check fetches it fresh"""
        self._recent = None

    def is_local_duplicate(self, track: Track) -> bool:
        """Session history, now playing and queue checks. No network."""
        key = key_for(track)
        if key in self.session_history:
            logger.debug("'%s' already recommended this session", track.name)
            return True

        current = self.playback.current_track
        if current is not None and key_for(current) == key:
            logger.debug("'%s' is the playing track", track.name)
            return True

        if any(key_for(queued) == key for queued in self.playback.queue):
            logger.debug("'%s' is already queued", track.name)
            return True

        return False

    async def _recently_played(self) -> List[Track]:
        if self._recent is None:
            try:
                self._recent = await self.catalog.get_recently_played(limit=self.recent_limit)
            except CatalogError as e:
                logger.warning("Recently played check failed, treating as empty: %s", str(e))
                self._recent = []
        return self._recent

    async def was_recently_played(self, track: Track) -> bool:
        """Match by exact id or by normalized key"""
        key = key_for(track)
        for played in await self._recently_played():
            if played.id == track.id or key_for(played) == key:
                logger.debug("'%s' was recently played", track.name)
                return True
        return False

    async def is_duplicate(self, track: Track) -> bool:
        if self.is_local_duplicate(track):
            return True
        return await self.was_recently_played(track)

    def accept(self, track: Track) -> str:
        """Record a track as recommended. Call before enqueuing."""
        key = key_for(track)
        self.session_history.add(key)
        return key
