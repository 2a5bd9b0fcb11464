from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class TimePeriod(str, Enum):
    """Time window for top-post listings"""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class PostType(str, Enum):
    """Content type of a post, used as a subscription filter"""
    IMAGE = "image"
    VIDEO = "video"
    LINK = "link"
    SELF_TEXT = "self"
    GALLERY = "gallery"


@dataclass
class Chat:
    """Telegram chat model"""
    chat_id: int
    repost_channel_id: Optional[int] = None


@dataclass
class SubscriptionArgs:
    """Requested subscription parameters"""
    subreddit: str
    limit: Optional[int] = None
    time: Optional[TimePeriod] = None
    filter: Optional[PostType] = None


@dataclass
class Subscription:
    """Stored subscription of a chat to a subreddit"""
    chat_id: int
    subreddit: str
    limit: Optional[int] = None
    time: Optional[TimePeriod] = None
    filter: Optional[PostType] = None
    created_at: Optional[datetime] = field(default=None, compare=False)


@dataclass
class Post:
    """Reddit post as supplied by the feed fetcher"""
    id: str
    subreddit: str
    title: str
    created: float
    post_type: PostType
    permalink: str = ""
    url: str = ""
    ups: int = 0
    is_self: bool = False
    is_video: bool = False


@dataclass
class StoreStats:
    """Row counts across the store"""
    chat_count: int
    subscription_count: int
    post_count: int
    seen_post_count: int
    repost_channel_count: int
