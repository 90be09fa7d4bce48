"""Video source: the YouTube Data API v3 client and its response cache.

The client knows nothing about quota. Callers look up each call's cost and
report it to the governor, using `Fetched.cache_hit` to tell whether the
call actually reached YouTube.
"""

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Protocol, TypeVar

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import Settings, get_settings
from app.core.exceptions import ExternalCallFailedError
from app.youtube.costs import ITEMS_PER_PAGE, YouTubeOperation

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CACHE_PREFIX = "youtube:cache:"

_DURATION_RE = re.compile(r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$")


@dataclass
class Fetched(Generic[T]):
    value: T
    cache_hit: bool = False


class VideoStub(BaseModel):
    """A video as listed by search or a channel's uploads playlist."""

    youtube_id: str
    title: str = ""
    published_at: datetime | None = None
    channel_id: str | None = None
    channel_title: str | None = None


class ChannelPage(BaseModel):
    items: list[VideoStub]
    next_page_token: str | None = None


class VideoDetails(BaseModel):
    youtube_id: str
    title: str
    description: str = ""
    thumbnail_url: str = ""
    duration_seconds: int = 0
    published_at: datetime | None = None
    view_count: int = 0
    like_count: int = 0
    channel_id: str | None = None
    channel_title: str | None = None


class VideoSource(Protocol):
    async def resolve_uploads_playlist(self, channel_id: str) -> Fetched[str | None]: ...

    async def list_channel_uploads(self, playlist_id: str, page_token: str | None = None) -> Fetched[ChannelPage]: ...

    async def search_by_keyword(
        self,
        query: str,
        max_results: int,
        published_after: datetime | None = None,
        published_before: datetime | None = None,
    ) -> Fetched[list[VideoStub]]: ...

    async def get_item_details(self, ids: list[str]) -> Fetched[list[VideoDetails]]: ...


def parse_duration(value: str | None) -> int:
    """Convert an ISO 8601 duration such as 'PT1H2M3S' to seconds."""
    if not value:
        return 0
    match = _DURATION_RE.match(value)
    if match is None:
        return 0
    parts = {name: int(amount) for name, amount in match.groupdict().items() if amount}
    return (
        parts.get("days", 0) * 86_400
        + parts.get("hours", 0) * 3_600
        + parts.get("minutes", 0) * 60
        + parts.get("seconds", 0)
    )


def _rfc3339(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _best_thumbnail(thumbnails: dict) -> str:
    for size in ("maxres", "high", "medium", "default"):
        if size in thumbnails:
            return thumbnails[size].get("url", "")
    return ""


class YouTubeClient:
    """Thin async client for the YouTube Data API v3."""

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.youtube_api_base_url,
            timeout=self.settings.youtube_request_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, operation: YouTubeOperation, path: str, params: dict) -> dict:
        params = {**params, "key": self.settings.youtube_api_key}
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalCallFailedError(
                operation.value,
                exc.response.text[:500],
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalCallFailedError(operation.value, str(exc) or type(exc).__name__) from exc
        return response.json()

    async def resolve_uploads_playlist(self, channel_id: str) -> Fetched[str | None]:
        data = await self._get(
            YouTubeOperation.CHANNEL_LIST,
            "/channels",
            {"part": "contentDetails", "id": channel_id},
        )
        items = data.get("items") or []
        if not items:
            return Fetched(None)
        return Fetched(items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads"))

    async def list_channel_uploads(self, playlist_id: str, page_token: str | None = None) -> Fetched[ChannelPage]:
        params = {"part": "snippet,contentDetails", "playlistId": playlist_id, "maxResults": ITEMS_PER_PAGE}
        if page_token:
            params["pageToken"] = page_token
        data = await self._get(YouTubeOperation.PLAYLIST_ITEMS_LIST, "/playlistItems", params)

        items = []
        for item in data.get("items", []):
            snippet = item.get("snippet", {})
            details = item.get("contentDetails", {})
            video_id = details.get("videoId") or snippet.get("resourceId", {}).get("videoId")
            if not video_id:
                continue
            items.append(
                VideoStub(
                    youtube_id=video_id,
                    title=snippet.get("title", ""),
                    published_at=details.get("videoPublishedAt") or snippet.get("publishedAt"),
                    channel_id=snippet.get("channelId"),
                    channel_title=snippet.get("channelTitle"),
                )
            )
        return Fetched(ChannelPage(items=items, next_page_token=data.get("nextPageToken")))

    async def search_by_keyword(
        self,
        query: str,
        max_results: int,
        published_after: datetime | None = None,
        published_before: datetime | None = None,
    ) -> Fetched[list[VideoStub]]:
        params = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "order": "date",
            "maxResults": min(max_results, ITEMS_PER_PAGE),
        }
        if published_after:
            params["publishedAfter"] = _rfc3339(published_after)
        if published_before:
            params["publishedBefore"] = _rfc3339(published_before)
        data = await self._get(YouTubeOperation.SEARCH, "/search", params)

        items = []
        for item in data.get("items", []):
            video_id = item.get("id", {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet", {})
            items.append(
                VideoStub(
                    youtube_id=video_id,
                    title=snippet.get("title", ""),
                    published_at=snippet.get("publishedAt"),
                    channel_id=snippet.get("channelId"),
                    channel_title=snippet.get("channelTitle"),
                )
            )
        return Fetched(items)

    async def get_item_details(self, ids: list[str]) -> Fetched[list[VideoDetails]]:
        data = await self._get(
            YouTubeOperation.VIDEO_LIST,
            "/videos",
            {"part": "snippet,contentDetails,statistics", "id": ",".join(ids[:ITEMS_PER_PAGE])},
        )

        details = []
        for item in data.get("items", []):
            snippet = item.get("snippet", {})
            statistics = item.get("statistics", {})
            details.append(
                VideoDetails(
                    youtube_id=item["id"],
                    title=snippet.get("title", ""),
                    description=snippet.get("description", ""),
                    thumbnail_url=_best_thumbnail(snippet.get("thumbnails", {})),
                    duration_seconds=parse_duration(item.get("contentDetails", {}).get("duration")),
                    published_at=snippet.get("publishedAt"),
                    view_count=int(statistics.get("viewCount", 0)),
                    like_count=int(statistics.get("likeCount", 0)),
                    channel_id=snippet.get("channelId"),
                    channel_title=snippet.get("channelTitle"),
                )
            )
        return Fetched(details)


_uploads_adapter = TypeAdapter(str | None)
_stubs_adapter = TypeAdapter(list[VideoStub])
_details_adapter = TypeAdapter(list[VideoDetails])


class CachingVideoSource:
    """Serve repeated YouTube reads from Redis. Hits are reported, never charged."""

    def __init__(self, source: VideoSource, redis: Redis, settings: Settings | None = None):
        self.source = source
        self.redis = redis
        self.settings = settings or get_settings()

    @staticmethod
    def _key(operation: YouTubeOperation, *parts: object) -> str:
        digest = hashlib.sha256(json.dumps([str(part) for part in parts]).encode()).hexdigest()[:32]
        return f"{CACHE_PREFIX}{operation.value}:{digest}"

    async def _read(self, key: str) -> str | None:
        try:
            return await self.redis.get(key)
        except RedisError as exc:
            logger.warning("youtube_cache_read_failed", key=key, error=str(exc))
            return None

    async def _write(self, key: str, payload: bytes, ttl: int) -> None:
        try:
            await self.redis.set(key, payload, ex=ttl)
        except RedisError as exc:
            logger.warning("youtube_cache_write_failed", key=key, error=str(exc))

    async def resolve_uploads_playlist(self, channel_id: str) -> Fetched[str | None]:
        key = self._key(YouTubeOperation.CHANNEL_LIST, channel_id)
        cached = await self._read(key)
        if cached is not None:
            return Fetched(_uploads_adapter.validate_json(cached), cache_hit=True)

        fetched = await self.source.resolve_uploads_playlist(channel_id)
        await self._write(key, _uploads_adapter.dump_json(fetched.value), self.settings.cache_ttl_channel)
        return fetched

    async def list_channel_uploads(self, playlist_id: str, page_token: str | None = None) -> Fetched[ChannelPage]:
        key = self._key(YouTubeOperation.PLAYLIST_ITEMS_LIST, playlist_id, page_token)
        cached = await self._read(key)
        if cached is not None:
            return Fetched(ChannelPage.model_validate_json(cached), cache_hit=True)

        fetched = await self.source.list_channel_uploads(playlist_id, page_token)
        await self._write(key, fetched.value.model_dump_json().encode(), self.settings.cache_ttl_playlist)
        return fetched

    async def search_by_keyword(
        self,
        query: str,
        max_results: int,
        published_after: datetime | None = None,
        published_before: datetime | None = None,
    ) -> Fetched[list[VideoStub]]:
        key = self._key(YouTubeOperation.SEARCH, query, max_results, published_after, published_before)
        cached = await self._read(key)
        if cached is not None:
            return Fetched(_stubs_adapter.validate_json(cached), cache_hit=True)

        fetched = await self.source.search_by_keyword(query, max_results, published_after, published_before)
        await self._write(key, _stubs_adapter.dump_json(fetched.value), self.settings.cache_ttl_search)
        return fetched

    async def get_item_details(self, ids: list[str]) -> Fetched[list[VideoDetails]]:
        key = self._key(YouTubeOperation.VIDEO_LIST, *sorted(ids))
        cached = await self._read(key)
        if cached is not None:
            return Fetched(_details_adapter.validate_json(cached), cache_hit=True)

        fetched = await self.source.get_item_details(ids)
        await self._write(key, _details_adapter.dump_json(fetched.value), self.settings.cache_ttl_video)
        return fetched


def build_video_source(settings: Settings, redis: Redis, client: YouTubeClient | None) -> VideoSource:
    """CachingVideoSource over the real API, or FakeVideoSource when no client is configured."""
    if client is not None:
        return CachingVideoSource(client, redis, settings)

    from app.youtube.source_fake import FakeVideoSource

    logger.warning("youtube_fake_source_enabled", scenario=settings.youtube_fake_scenario)
    return FakeVideoSource(settings.youtube_fake_scenario)
