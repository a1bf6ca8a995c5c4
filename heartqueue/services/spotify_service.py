"""
Spotify Web API client used as the catalog provider.
"""

import logging
from typing import List, Optional

import httpx

from heartqueue.exceptions import CatalogDecodeError, CatalogTransportError
from heartqueue.models import PlaybackSnapshot, Playlist, Track

logger = logging.getLogger(__name__)

DEFAULT_MARKET = "US"
TRACK_BATCH_SIZE = 50

# Raised while walking a payload whose shape differs from the documented one
SHAPE_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def chunked(items: List[str], size: int) -> List[List[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TokenProvider:
    """Supplies the bearer token for catalog requests"""

    async def get_token(self) -> str:
        raise NotImplementedError

    async def refresh(self) -> str:
        """Refresh an expired token. Providers that cannot refresh return the current one."""
        return await self.get_token()


class StaticTokenProvider(TokenProvider):
    """Token provider for a token obtained out of band"""

    def __init__(self, token: Optional[str]):
        self._token = token

    async def get_token(self) -> str:
        if not self._token:
            raise CatalogTransportError("No access token available")
        return self._token


class SpotifyService:
    """
    A service class for the catalog endpoints the recommendation pipeline needs.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = "https://api.spotify.com/v1",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.market = DEFAULT_MARKET

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, params: Optional[dict] = None) -> Optional[dict]:
        """Send an authorized request, refreshing the token once on 401"""
        url = f"{self.base_url}{path}"
        refreshed = False
        token = await self.token_provider.get_token()

        while True:
            try:
                response = await self._client.request(
                    method, url, params=params, headers={"Authorization": f"Bearer {token}"}
                )
            except httpx.HTTPError as e:
                raise CatalogTransportError(f"{method} {path} failed: {e}") from e

            if response.status_code == 401 and not refreshed:
                logger.info("Catalog token rejected, refreshing")
                token = await self.token_provider.refresh()
                refreshed = True
                continue
            break

        if not response.is_success:
            raise CatalogTransportError(
                f"{method} {path} returned HTTP {response.status_code}", status_code=response.status_code
            )
        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise CatalogDecodeError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _parse_tracks(items: list, nested: bool = False) -> List[Track]:
        tracks = []
        for item in items or []:
            data = (item or {}).get("track") if nested else item
            if not data or not data.get("id"):
                continue
            if data.get("type", "track") != "track":
                continue
            tracks.append(Track.from_api(data))
        return tracks

    async def search_playlists(self, query: str, limit: int = 50) -> List[Optional[Playlist]]:
        """Search playlists by keyword. Deleted or restricted playlists come back as None."""
        data = await self._request(
            "GET", "/search", params={"q": query, "type": "playlist", "limit": limit, "market": self.market}
        )
        if not data:
            return []
        try:
            if not data.get("playlists"):
                return []
            items = data["playlists"]["items"]
            return [Playlist.from_api(item) if item and item.get("id") else None for item in items]
        except SHAPE_ERRORS as e:
            raise CatalogDecodeError(f"Unexpected search response shape: {e}") from e

    async def get_playlist_tracks(self, playlist_id: str, limit: int = 100) -> List[Track]:
        data = await self._request(
            "GET", f"/playlists/{playlist_id}/tracks", params={"limit": limit, "market": self.market}
        )
        if not data:
            return []
        try:
            return self._parse_tracks(data["items"], nested=True)
        except SHAPE_ERRORS as e:
            raise CatalogDecodeError(f"Unexpected playlist tracks shape: {e}") from e

    async def get_recently_played(self, limit: int = 50) -> List[Track]:
        data = await self._request("GET", "/me/player/recently-played", params={"limit": limit})
        if not data:
            return []
        try:
            return self._parse_tracks(data["items"], nested=True)
        except SHAPE_ERRORS as e:
            raise CatalogDecodeError(f"Unexpected recently played shape: {e}") from e

    async def get_top_tracks(self, time_range: str = "short_term", limit: int = 50) -> List[Track]:
        data = await self._request("GET", "/me/top/tracks", params={"time_range": time_range, "limit": limit})
        if not data:
            return []
        try:
            return self._parse_tracks(data["items"])
        except SHAPE_ERRORS as e:
            raise CatalogDecodeError(f"Unexpected top tracks shape: {e}") from e

    async def get_tracks(self, track_ids: List[str]) -> List[Track]:
        """Fetch full track objects in batches, preserving input order and skipping unknown ids"""
        tracks = []
        for batch in chunked(track_ids, TRACK_BATCH_SIZE):
            data = await self._request("GET", "/tracks", params={"ids": ",".join(batch), "market": self.market})
            if not data:
                continue
            try:
                tracks.extend(self._parse_tracks(data["tracks"]))
            except SHAPE_ERRORS as e:
                raise CatalogDecodeError(f"Unexpected tracks shape: {e}") from e
        return tracks

    async def add_to_queue(self, uri: str, device_id: Optional[str] = None) -> None:
        params = {"uri": uri}
        if device_id:
            params["device_id"] = device_id
        await self._request("POST", "/me/player/queue", params=params)
        logger.info("Added to queue: %s", uri)

    async def get_playback_snapshot(self) -> PlaybackSnapshot:
        """Currently playing track and upcoming queue"""
        data = await self._request("GET", "/me/player/queue")
        if not data:
            return PlaybackSnapshot()
        try:
            current = self._parse_tracks([data.get("currently_playing")])
            return PlaybackSnapshot(
                currently_playing=current[0] if current else None,
                queue=self._parse_tracks(data.get("queue") or []),
            )
        except SHAPE_ERRORS as e:
            raise CatalogDecodeError(f"Unexpected queue shape: {e}") from e

    async def load_market(self) -> str:
        """Read the listener's market from the profile, keeping the default when absent"""
        data = await self._request("GET", "/me")
        try:
            country = (data or {}).get("country")
        except AttributeError as e:
            raise CatalogDecodeError(f"Unexpected profile shape: {e}") from e
        if country:
            self.market = country
        logger.info("User market: %s", self.market)
        return self.market
