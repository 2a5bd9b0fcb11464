"""Text codec for enumerated column values

Every value written to the ``time`` and ``filter`` columns goes through the
tables below. Decoding rejects anything the encoder could not have produced.
"""
from typing import Dict, Optional

from .errors import DataCorruptionError
from .models import PostType, TimePeriod

TIME_PERIOD_TO_TEXT: Dict[TimePeriod, str] = {
    TimePeriod.HOUR: "hour",
    TimePeriod.DAY: "day",
    TimePeriod.WEEK: "week",
    TimePeriod.MONTH: "month",
    TimePeriod.YEAR: "year",
    TimePeriod.ALL: "all",
}

POST_TYPE_TO_TEXT: Dict[PostType, str] = {
    PostType.IMAGE: "image",
    PostType.VIDEO: "video",
    PostType.LINK: "link",
    PostType.SELF_TEXT: "self",
    PostType.GALLERY: "gallery",
}

TEXT_TO_TIME_PERIOD: Dict[str, TimePeriod] = {v: k for k, v in TIME_PERIOD_TO_TEXT.items()}
TEXT_TO_POST_TYPE: Dict[str, PostType] = {v: k for k, v in POST_TYPE_TO_TEXT.items()}


def encode_time_period(value: Optional[TimePeriod]) -> Optional[str]:
    if value is None:
        return None
    return TIME_PERIOD_TO_TEXT[TimePeriod(value)]


def decode_time_period(text: Optional[str], column: str = "time") -> Optional[TimePeriod]:
    if text is None:
        return None
    try:
        return TEXT_TO_TIME_PERIOD[text]
    except (KeyError, TypeError):
        raise DataCorruptionError(column, text) from None


def encode_post_type(value: Optional[PostType]) -> Optional[str]:
    if value is None:
        return None
    return POST_TYPE_TO_TEXT[PostType(value)]


def decode_post_type(text: Optional[str], column: str = "filter") -> Optional[PostType]:
    if text is None:
        return None
    try:
        return TEXT_TO_POST_TYPE[text]
    except (KeyError, TypeError):
        raise DataCorruptionError(column, text) from None


def parse_time_period(text: str) -> TimePeriod:
    """Parse user input such as ``Week`` into a TimePeriod"""
    value = TEXT_TO_TIME_PERIOD.get(text.strip().lower())
    if value is None:
        raise ValueError(f"unknown time period: {text}")
    return value


def parse_post_type(text: str) -> PostType:
    """Parse user input such as ``Video`` into a PostType"""
    value = TEXT_TO_POST_TYPE.get(text.strip().lower())
    if value is None:
        raise ValueError(f"unknown post type: {text}")
    return value
