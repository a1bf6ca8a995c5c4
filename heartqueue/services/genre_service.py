"""
Genre vocabulary mapping.

Listener genres are free-form strings. The similarity provider only accepts a
fixed enum, so genres go through an alias table. Unknown genres are dropped.
"""

import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)

SIMILARITY_GENRE_ALIASES = {
    "electronic": "electronicDance",
    "electronicdance": "electronicDance",
    "edm": "electronicDance",
    "rock": "rock",
    "pop": "pop",
    "hiphop": "rapHipHop",
    "hip-hop": "rapHipHop",
    "hip hop": "rapHipHop",
    "rap": "rapHipHop",
    "rnb": "rnB",
    "r&b": "rnB",
    "r-n-b": "rnB",
    "jazz": "jazz",
    "blues": "blues",
    "classical": "classical",
    "reggae": "reggae",
    "metal": "metal",
    "folk": "folkCountry",
    "country": "folkCountry",
}


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def map_similarity_genres(genres: Iterable[str]) -> List[str]:
    """Map free-form genres to the similarity provider's genre enum"""
    mapped = []
    for genre in genres:
        key = genre.strip().lower()
        value = SIMILARITY_GENRE_ALIASES.get(key)
        if value is None:
            logger.debug("Dropping unmapped similarity genre: %s", genre)
            continue
        mapped.append(value)
    return _dedupe(mapped)


def build_search_query(genres: Iterable[str]) -> str:
    """Join genres into one lower-cased keyword query"""
    return " ".join(g.strip().lower() for g in genres if g and g.strip())
