"""
Shared fixtures for the HeartQueue tests
"""

# pylint: disable=redefined-outer-name

from unittest.mock import AsyncMock, Mock

import pytest  # pylint: disable=import-error

from heartqueue.models import ArtistRef, PlaybackSnapshot, Playlist, Track


def build_track(track_id, name=None, artist="Artist", artist_id=None, popularity=0):
    return Track(
        id=track_id,
        name=name or f"Song {track_id}",
        uri=f"spotify:track:{track_id}",
        artists=[ArtistRef(id=artist_id or f"artist-{artist.lower()}", name=artist)],
        popularity=popularity,
    )


def build_playlist(playlist_id, name="Workout House Mix", track_count=25, description=None):
    return Playlist(id=playlist_id, name=name, description=description, track_count=track_count)


@pytest.fixture
def make_track():
    """Factory for catalog tracks"""
    return build_track


@pytest.fixture
def make_playlist():
    """Factory for playlist search results"""
    return build_playlist


@pytest.fixture
def catalog():
    """Mock catalog client with empty defaults"""
    mock = Mock()
    mock.market = "US"
    mock.search_playlists = AsyncMock(return_value=[])
    mock.get_playlist_tracks = AsyncMock(return_value=[])
    mock.get_recently_played = AsyncMock(return_value=[])
    mock.get_top_tracks = AsyncMock(return_value=[])
    mock.get_tracks = AsyncMock(return_value=[])
    mock.add_to_queue = AsyncMock(return_value=None)
    mock.get_playback_snapshot = AsyncMock(return_value=PlaybackSnapshot())
    mock.load_market = AsyncMock(return_value="US")
    return mock
