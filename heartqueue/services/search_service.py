"""
Catalog search stage: find one non-duplicate track from genre playlists.
"""

import logging
import random
from typing import List, Optional

from heartqueue.exceptions import CatalogDecodeError, CatalogError
from heartqueue.models import Playlist, Track
from heartqueue.services.genre_service import build_search_query

logger = logging.getLogger(__name__)

MIN_PLAYLIST_TRACKS = 20
PODCAST_TOKENS = ("podcast", "episode")

# Negative-intent keywords matched against playlist name and description
BANNED_PLAYLIST_TOKENS = (
    "christmas", "holiday", "xmas", "noel", "santa",
    "\U0001f384", "\U0001f385", "snow", "winter",
    "halloween", "easter", "valentine",
    "love songs", "romance",
    "sleep", "chill", "ambient", "relax", "meditation", "study",
    "soundtrack", "ost",
    "kids", "family",
)


def is_podcast(playlist: Playlist) -> bool:
    name = playlist.name.lower()
    return any(token in name for token in PODCAST_TOKENS)


def is_banned(playlist: Playlist) -> bool:
    text = f"{playlist.name} {playlist.description or ''}".lower()
    return any(token in text for token in BANNED_PLAYLIST_TOKENS)


def filter_playlists(playlists: List[Optional[Playlist]]) -> List[Playlist]:
    """
    Drop holes, podcasts and negative-intent playlists, preferring playlists
    with at least MIN_PLAYLIST_TRACKS tracks.

    If no playlist meets the track-count requirement, the requirement is
    relaxed but the podcast and keyword exclusions still apply.
    """
    valid = [p for p in playlists if p is not None]
    allowed = []
    for playlist in valid:
        if is_podcast(playlist):
            continue
        if is_banned(playlist):
            logger.debug("Filtered out banned playlist: '%s'", playlist.name)
            continue
        allowed.append(playlist)

    quality = [p for p in allowed if p.track_count >= MIN_PLAYLIST_TRACKS]
    logger.info(
        "Playlists: %d returned, %d valid, %d quality", len(playlists), len(valid), len(quality)
    )
    if quality:
        return quality
    if allowed:
        logger.info("No quality playlists, using %d relaxed playlists", len(allowed))
    return allowed


class CatalogSearchService:
    """
    Searches the catalog for genre playlists and walks them for a valid track.
    """

    def __init__(self, catalog, dedup, familiarity=None, rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.dedup = dedup
        self.familiarity = familiarity
        self.rng = rng or random.Random()

    async def search_playlists(self, genres: List[str]) -> List[Playlist]:
        """Combined keyword search, filtered for quality. Failures yield no playlists."""
        query = build_search_query(genres)
        if not query:
            return []

        logger.info("Searching playlists for '%s'", query)
        try:
            results = await self.catalog.search_playlists(query)
        except CatalogDecodeError as e:
            logger.error("Could not decode playlist search response: %s", str(e))
            return []
        except CatalogError as e:
            logger.warning("Playlist search failed: %s", str(e))
            return []
        return filter_playlists(results)

    def _pick(self, candidates: List[Track]) -> Track:
        if self.familiarity is not None and self.familiarity.is_loaded:
            return self.familiarity.sample(candidates)
        return self.rng.choice(candidates)

    async def _track_from_playlist(self, playlist: Playlist) -> Optional[Track]:
        try:
            tracks = await self.catalog.get_playlist_tracks(playlist.id)
        except CatalogDecodeError as e:
            logger.error("Could not decode tracks of playlist '%s': %s", playlist.name, str(e))
            return None
        except CatalogError as e:
            logger.warning("Fetching playlist '%s' failed: %s", playlist.name, str(e))
            return None

        candidates = [track for track in tracks if not self.dedup.is_local_duplicate(track)]
        logger.debug(
            "Playlist '%s': %d tracks, %d after duplicate filtering", playlist.name, len(tracks), len(candidates)
        )

        while candidates:
            selected = self._pick(candidates)
            if not await self.dedup.was_recently_played(selected):
                return selected
            candidates.remove(selected)
        return None

    async def find_track(self, genres: List[str]) -> Optional[Track]:
        """
        Return one valid track for the genres, or None once every playlist is exhausted.

        Args:
            genres: Target genres, joined into a single keyword query

        Returns:
            The selected track, or None when the search is exhausted
        """
        playlists = await self.search_playlists(genres)
        if not playlists:
            logger.info("No playlists found via search")
            return None

        ordered = list(playlists)
        self.rng.shuffle(ordered)

        for attempt, playlist in enumerate(ordered, start=1):
            logger.info(
                "Attempt %d/%d: trying playlist '%s' (%s)", attempt, len(ordered), playlist.name, playlist.id
            )
            track = await self._track_from_playlist(playlist)
            if track is not None:
                logger.info("Found valid track: '%s' by %s", track.name, track.artist_names)
                return track
            logger.info("No valid track in '%s', trying next playlist", playlist.name)

        logger.info("Exhausted all %d playlists, no valid track found", len(ordered))
        return None
