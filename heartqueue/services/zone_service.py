"""
Heart-rate zone and music target calculation.

Pure functions, no I/O: a heart-rate sample plus the listener settings map to
an exertion zone, a genre list and a tempo window.
"""

from typing import Dict, NamedTuple

from heartqueue.models import TempoWindow, UserSettings, ZoneTarget

DEFAULT_MAX_HEART_RATE = 190

# Percent-of-max lower bounds for zones 1..5
ZONE_THRESHOLDS = (50, 60, 70, 80, 90)


class TempoBand(NamedTuple):
    floor: int
    ceiling: int
    offset: int
    low_heart_rate: int


TEMPO_BANDS: Dict[int, TempoBand] = {
    2: TempoBand(floor=80, ceiling=140, offset=10, low_heart_rate=80),
    3: TempoBand(floor=100, ceiling=160, offset=12, low_heart_rate=100),
    4: TempoBand(floor=120, ceiling=180, offset=15, low_heart_rate=120),
    5: TempoBand(floor=140, ceiling=210, offset=20, low_heart_rate=150),
}

CASUAL_TEMPO = TempoWindow(start=60, end=200)


def zone_for(bpm: int, max_heart_rate: int = DEFAULT_MAX_HEART_RATE) -> int:
    """
    Map a heart-rate sample to an exertion zone 0-5.

    Boundaries belong to the higher zone (exactly 60% of max is zone 2).
    Integer arithmetic keeps the boundaries exact.
    """
    if max_heart_rate <= 0:
        raise ValueError("max_heart_rate must be positive")
    bpm = max(bpm, 0)
    return sum(1 for threshold in ZONE_THRESHOLDS if bpm * 100 >= threshold * max_heart_rate)


def tempo_window_for(zone: int, bpm: int) -> TempoWindow:
    """Tempo window centred on the heart rate, clamped to the zone band"""
    band = TEMPO_BANDS.get(zone)
    if band is None:
        return CASUAL_TEMPO

    if bpm < band.low_heart_rate:
        start, end = band.floor, band.ceiling
    else:
        start = max(band.floor, bpm - band.offset)
        end = min(band.ceiling, bpm + band.offset)

    if start > end:
        start, end = end, start
    return TempoWindow(start=start, end=end)


def genres_for(zone: int, settings: UserSettings) -> list:
    if zone >= 4:
        return list(settings.threshold_genres)
    if zone >= 2:
        return list(settings.steady_state_genres)
    return []


def strategy_for(zone: int) -> str:
    if zone >= 4:
        return f"Threshold (Zone {zone})"
    if zone >= 2:
        return f"Steady State (Zone {zone})"
    return f"Casual (Zone {zone})"


def target_for(bpm: int, settings: UserSettings) -> ZoneTarget:
    """Compute zone, genres and tempo window for a heart-rate sample"""
    zone = zone_for(bpm, settings.max_heart_rate)
    return ZoneTarget(
        zone=zone,
        genres=genres_for(zone, settings),
        tempo=tempo_window_for(zone, bpm),
        strategy=strategy_for(zone),
    )
