"""
Familiarity Service

Builds the listener's familiarity pool from listening history and ranks
candidates with a 90/10 familiar/novel sampling policy.
"""

import asyncio
import logging
import random
from typing import List, Optional, Set, Tuple

from heartqueue.exceptions import CatalogError
from heartqueue.models import Track

logger = logging.getLogger(__name__)

TRACK_BONUS = 5.0
ARTIST_BONUS = 3.0
POPULARITY_DIVISOR = 20.0
NOVELTY_PENALTY = 2.0
FAMILIAR_SHARE = 90

TOP_TRACK_RANGES = ("short_term", "medium_term")


class FamiliarityService:
    """
    Holds familiar track and artist ids and scores candidates against them.
    """

    def __init__(self, catalog, history_limit: int = 50, rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.history_limit = history_limit
        self.rng = rng or random.Random()
        self.track_ids: Set[str] = set()
        self.artist_ids: Set[str] = set()
        self.is_loaded = False

    async def load(self, force: bool = False):
        """Build the pool from recently played and two top-tracks horizons"""
        if self.is_loaded and not force:
            return

        sources = [self.catalog.get_recently_played(limit=self.history_limit)]
        sources.extend(
            self.catalog.get_top_tracks(time_range=time_range, limit=self.history_limit)
            for time_range in TOP_TRACK_RANGES
        )
        results = await asyncio.gather(*sources, return_exceptions=True)

        track_ids: Set[str] = set()
        artist_ids: Set[str] = set()
        for result in results:
            if isinstance(result, CatalogError):
                logger.warning("Familiarity source failed: %s", str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            for track in result:
                track_ids.add(track.id)
                artist_ids.update(track.artist_ids)

        self.track_ids = track_ids
        self.artist_ids = artist_ids
        self.is_loaded = True
        logger.info("Familiarity loaded: %d tracks, %d artists", len(track_ids), len(artist_ids))

    def is_familiar(self, track: Track) -> bool:
        return track.id in self.track_ids or any(a in self.artist_ids for a in track.artist_ids)

    def score(self, track: Track) -> float:
        """
        Familiarity bonuses plus popularity, minus a penalty when no artist is familiar.

        The penalty ignores track membership so a known track always scores
        exactly TRACK_BONUS above an otherwise identical unknown one.
        """
        score = 0.0
        if track.id in self.track_ids:
            score += TRACK_BONUS

        familiar_artists = sum(1 for artist_id in track.artist_ids if artist_id in self.artist_ids)
        score += ARTIST_BONUS * familiar_artists
        score += track.popularity / POPULARITY_DIVISOR

        if familiar_artists == 0:
            score -= NOVELTY_PENALTY
        return score

    def partition(self, candidates: List[Track]) -> Tuple[List[Tuple[Track, float]], List[Tuple[Track, float]]]:
        familiar, novel = [], []
        for track in candidates:
            entry = (track, self.score(track))
            (familiar if self.is_familiar(track) else novel).append(entry)
        return familiar, novel

    def sample(self, candidates: List[Track]) -> Optional[Track]:
        """Pick the top familiar candidate 90% of the time, the top novel one otherwise"""
        if not candidates:
            return None

        familiar, novel = self.partition(candidates)
        logger.debug("Ranking: %d familiar, %d novel candidates", len(familiar), len(novel))

        use_familiar = self.rng.randint(1, 100) <= FAMILIAR_SHARE
        preferred, other = (familiar, novel) if use_familiar else (novel, familiar)
        pool = preferred or other or familiar + novel

        track, score = max(pool, key=lambda entry: entry[1])
        logger.info(
            "Selected %s track: '%s' (score: %.2f)",
            "familiar" if self.is_familiar(track) else "novel",
            track.name,
            score,
        )
        return track
