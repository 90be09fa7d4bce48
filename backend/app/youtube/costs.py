"""YouTube Data API v3 operation kinds and their quota costs.

Search costs 100x an id lookup, which is why the orchestrator prefers
enumerating a channel's uploads over keyword search whenever it knows the
channel id. See https://developers.google.com/youtube/v3/determine_quota_cost
"""

from enum import Enum


class YouTubeOperation(str, Enum):
    """External operation kinds metered against the daily quota."""

    SEARCH = "search"
    VIDEO_LIST = "video.list"
    VIDEO_INSERT = "video.insert"
    VIDEO_UPDATE = "video.update"
    VIDEO_RATE = "video.rate"
    CHANNEL_LIST = "channel.list"
    PLAYLIST_ITEMS_LIST = "playlistItems.list"
    PLAYLIST_LIST = "playlist.list"
    COMMENT_THREADS_LIST = "commentThreads.list"
    COMMENT_INSERT = "comment.insert"
    ACTIVITIES_LIST = "activities.list"
    SUBSCRIPTIONS_LIST = "subscriptions.list"


QUOTA_COSTS: dict[YouTubeOperation, int] = {
    YouTubeOperation.SEARCH: 100,
    YouTubeOperation.VIDEO_LIST: 1,
    YouTubeOperation.VIDEO_INSERT: 1600,
    YouTubeOperation.VIDEO_UPDATE: 50,
    YouTubeOperation.VIDEO_RATE: 50,
    YouTubeOperation.CHANNEL_LIST: 1,
    YouTubeOperation.PLAYLIST_ITEMS_LIST: 1,
    YouTubeOperation.PLAYLIST_LIST: 1,
    YouTubeOperation.COMMENT_THREADS_LIST: 1,
    YouTubeOperation.COMMENT_INSERT: 50,
    YouTubeOperation.ACTIVITIES_LIST: 1,
    YouTubeOperation.SUBSCRIPTIONS_LIST: 1,
}

KNOWN_OPERATIONS = frozenset(operation.value for operation in YouTubeOperation)

# Default project quota granted by YouTube
DAILY_QUOTA_LIMIT = 10_000

# Page size for playlistItems.list and batch size for video.list
ITEMS_PER_PAGE = 50


def quota_cost(operation: YouTubeOperation | str, count: int = 1) -> int:
    """Return the quota units charged for `count` calls of `operation`."""
    return QUOTA_COSTS[YouTubeOperation(operation)] * count
