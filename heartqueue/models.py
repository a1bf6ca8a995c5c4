"""
Defines the data models used in the application.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtistRef(BaseModel):
    """Artist reference attached to a track"""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str


class Track(BaseModel):
    """Track model as fetched from the catalog"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    uri: str
    artists: List[ArtistRef] = []
    image_url: Optional[str] = None
    popularity: int = 0

    @property
    def artist_names(self) -> str:
        """Artist names joined the way the catalog displays them"""
        return ", ".join(artist.name for artist in self.artists)

    @property
    def artist_ids(self) -> List[str]:
        return [artist.id for artist in self.artists if artist.id]

    @classmethod
    def from_api(cls, data: dict) -> "Track":
        """Build a track from a catalog track object"""
        images = (data.get("album") or {}).get("images") or []
        return cls(
            id=data["id"],
            name=data["name"],
            uri=data.get("uri") or f"spotify:track:{data['id']}",
            artists=[ArtistRef(id=a.get("id"), name=a.get("name", "")) for a in data.get("artists") or []],
            image_url=images[0].get("url") if images else None,
            popularity=data.get("popularity") or 0,
        )


class Playlist(BaseModel):
    """Playlist search result, fetched fresh per search"""

    id: str
    name: str
    description: Optional[str] = None
    track_count: int = 0

    @classmethod
    def from_api(cls, data: dict) -> "Playlist":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            description=data.get("description"),
            track_count=(data.get("tracks") or {}).get("total") or 0,
        )


class PlaybackSnapshot(BaseModel):
    """Currently playing track plus the upcoming queue"""

    currently_playing: Optional[Track] = None
    queue: List[Track] = []


class PlaybackState(BaseModel):
    """Live view of the player shared by the pipeline and the session"""

    current_track: Optional[Track] = None
    queue: List[Track] = []
    auto_recommended_uris: Set[str] = Field(default_factory=set)

    def apply(self, snapshot: PlaybackSnapshot) -> bool:
        """Update from a snapshot. Returns True when the playing track changed."""
        self.queue = list(snapshot.queue)
        new_track = snapshot.currently_playing
        if new_track is None:
            return False
        changed = self.current_track is None or self.current_track.uri != new_track.uri
        self.current_track = new_track
        return changed

    def has_queued_recommendation(self) -> bool:
        return any(track.uri in self.auto_recommended_uris for track in self.queue)


class TempoWindow(BaseModel):
    """Target music tempo range in BPM"""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int


class ZoneTarget(BaseModel):
    """Exertion zone plus the genres and tempo window it maps to"""

    zone: int = Field(..., ge=0, le=5)
    genres: List[str] = []
    tempo: TempoWindow
    strategy: str


class UserSettings(BaseModel):
    """Persisted listener settings"""

    max_heart_rate: int = Field(default=190, gt=0, description="Maximum heart rate in BPM")
    steady_state_genres: List[str] = Field(default_factory=list, description="Genres for zones 2-3")
    threshold_genres: List[str] = Field(default_factory=list, description="Genres for zones 4-5")
    auto_recommend: bool = True


class RecommendationRequest(BaseModel):
    """One pipeline run for a seed track"""

    seed_track_id: str
    zone: int = Field(..., ge=0, le=5)
    tempo: TempoWindow
    genres: List[str]
    attempt: int = 0


class RecommendationState(str, Enum):
    """Pipeline states for a single recommendation run"""

    IDLE = "idle"
    SKIPPED = "skipped"
    SEARCHING = "searching"
    FOUND = "found"
    COMMITTED = "committed"
    EXHAUSTED = "exhausted"
    FALLBACK_REQUESTED = "fallback_requested"
    ANALYZING = "analyzing"
    POLLING = "polling"
    ABANDONED = "abandoned"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        RecommendationState.SKIPPED,
        RecommendationState.COMMITTED,
        RecommendationState.ABANDONED,
        RecommendationState.ERROR,
        RecommendationState.CANCELLED,
    }
)


class RecommendationEvent(BaseModel):
    """Diagnostic record for one trigger"""

    timestamp: datetime = Field(default_factory=_utcnow)
    zone: int
    bpm: int
    genres: List[str] = []
    state: RecommendationState = RecommendationState.IDLE
    detail: Optional[str] = None
    found_track: Optional[str] = None


class AnalysisStatus(str, Enum):
    """Server-side analysis lifecycle for a seed track"""

    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"


class AnalysisRecord(BaseModel):
    """Cached analysis state kept by the proxy"""

    track_id: str
    status: AnalysisStatus
    timestamp: datetime = Field(default_factory=_utcnow)


class AnalyzeStatus(str, Enum):
    """Status values of the analyze endpoint"""

    SUCCESS = "success"
    ANALYZING = "analyzing"
    ERROR = "error"


class AnalyzeResponse(BaseModel):
    """Wire payload of the analyze endpoint"""

    model_config = ConfigDict(populate_by_name=True)

    status: AnalyzeStatus
    track_ids: Optional[List[str]] = Field(default=None, alias="trackIds")
    error: Optional[str] = None

    @field_validator("track_ids")
    @classmethod
    def _drop_blank_ids(cls, value):
        if value is None:
            return value
        return [track_id for track_id in value if track_id]


class ProxyHealth(BaseModel):
    """Liveness payload returned by the analyze endpoint without a track id"""

    status: str = "healthy"
    version: str
    message: str
