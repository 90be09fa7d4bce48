"""FakeVideoSource: scenario-based test double for the VideoSource protocol.

Serves a deterministic channel of videos, newest first, one hour apart.
Named scenarios:
- happy_path: every call succeeds and reaches "YouTube"
- cached: every call succeeds and reports a cache hit
- no_uploads: the channel has no uploads playlist
- playlist_failure: the second uploads page fails
- search_failure: every keyword search fails
- details_failure: every video.list batch fails

No network, no delays. Every call is recorded in `calls` for assertions.
"""

from datetime import UTC, datetime, timedelta

from app.core.exceptions import ExternalCallFailedError
from app.youtube.costs import ITEMS_PER_PAGE, YouTubeOperation
from app.youtube.source import ChannelPage, Fetched, VideoDetails, VideoStub

NEWEST_PUBLISHED_AT = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


class FakeVideoSource:
    VALID_SCENARIOS = {
        "happy_path",
        "cached",
        "no_uploads",
        "playlist_failure",
        "search_failure",
        "details_failure",
    }

    def __init__(self, scenario: str = "happy_path", video_count: int = 120):
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.videos = [
            VideoStub(
                youtube_id=f"vid{index:05d}",
                title=f"Halftime show {index}",
                published_at=NEWEST_PUBLISHED_AT - timedelta(hours=index),
                channel_id="UCfakechannel",
                channel_title="Fake Band Channel",
            )
            for index in range(video_count)
        ]
        self.calls: list[str] = []

    @property
    def _cache_hit(self) -> bool:
        return self.scenario == "cached"

    def calls_to(self, operation: YouTubeOperation) -> int:
        return sum(1 for call in self.calls if call == operation.value)

    async def resolve_uploads_playlist(self, channel_id: str) -> Fetched[str | None]:
        self.calls.append(YouTubeOperation.CHANNEL_LIST.value)
        if self.scenario == "no_uploads":
            return Fetched(None, cache_hit=self._cache_hit)
        return Fetched(f"UU{channel_id[2:]}", cache_hit=self._cache_hit)

    async def list_channel_uploads(self, playlist_id: str, page_token: str | None = None) -> Fetched[ChannelPage]:
        self.calls.append(YouTubeOperation.PLAYLIST_ITEMS_LIST.value)
        page = int(page_token or 0)
        if self.scenario == "playlist_failure" and page >= 1:
            raise ExternalCallFailedError(YouTubeOperation.PLAYLIST_ITEMS_LIST.value, "backendError", status_code=500)

        start = page * ITEMS_PER_PAGE
        items = self.videos[start : start + ITEMS_PER_PAGE]
        next_token = str(page + 1) if start + ITEMS_PER_PAGE < len(self.videos) else None
        return Fetched(ChannelPage(items=items, next_page_token=next_token), cache_hit=self._cache_hit)

    async def search_by_keyword(
        self,
        query: str,
        max_results: int,
        published_after: datetime | None = None,
        published_before: datetime | None = None,
    ) -> Fetched[list[VideoStub]]:
        self.calls.append(YouTubeOperation.SEARCH.value)
        if self.scenario == "search_failure":
            raise ExternalCallFailedError(YouTubeOperation.SEARCH.value, "quotaExceeded", status_code=403)

        matches = [
            video
            for video in self.videos
            if (published_after is None or video.published_at >= published_after)
            and (published_before is None or video.published_at < published_before)
        ]
        return Fetched(matches[:max_results], cache_hit=self._cache_hit)

    async def get_item_details(self, ids: list[str]) -> Fetched[list[VideoDetails]]:
        self.calls.append(YouTubeOperation.VIDEO_LIST.value)
        if self.scenario == "details_failure":
            raise ExternalCallFailedError(YouTubeOperation.VIDEO_LIST.value, "backendError", status_code=503)

        by_id = {video.youtube_id: video for video in self.videos}
        details = [
            VideoDetails(
                youtube_id=video_id,
                title=by_id[video_id].title,
                description="Fifth quarter",
                duration_seconds=300,
                published_at=by_id[video_id].published_at,
                view_count=1000,
                like_count=50,
                channel_id=by_id[video_id].channel_id,
                channel_title=by_id[video_id].channel_title,
            )
            for video_id in ids
            if video_id in by_id
        ]
        return Fetched(details, cache_hit=self._cache_hit)
