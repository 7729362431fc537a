"""Extraction and indexing of identifiers seen in list responses.

Scenarios pick their parameters (a group to create coupons in, a code that
already exists, a media to associate) from what the live backend currently
holds. `ingest()` replaces the index wholesale; it never accumulates.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from endpoint_sentinel.api_client import ResponseEnvelope

logger = logging.getLogger(__name__)


def resolve_relation(value: Any) -> Optional[str]:
    """Return the scalar identifier behind a relation field.

    Relations arrive either as a bare id string or as an embedded object
    carrying `_id` (sometimes `id`). Anything else resolves to None.
    """
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None or value == "" or isinstance(value, (dict, list, bool)):
        return None
    return str(value)


def _label(value: Any) -> Optional[str]:
    """Name-or-id of a tag/category entry (object or bare string)."""
    if isinstance(value, dict):
        value = value.get("name") or value.get("id") or value.get("_id")
    if value is None or value == "":
        return None
    return str(value)


class OrderedIdSet:
    """Insertion-ordered set of identifiers; falsy values are ignored."""

    def __init__(self, values: Iterable[Any] = ()) -> None:
        self._items: Dict[Any, None] = {}
        for value in values:
            self.add(value)

    def add(self, value: Any) -> bool:
        if value is None or value == "" or value in self._items:
            return False
        self._items[value] = None
        return True

    def __contains__(self, value: Any) -> bool:
        return value in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def to_list(self) -> List[Any]:
        return list(self._items)


@dataclass
class DataStats:
    total_records: int
    unique_group_ids: int
    unique_coupon_codes: int
    unique_media_ids: int


class TestDataManager:
    """Extracted Index over coupon (and media) list responses.

    Args:
        seed: Seed for the random accessors; None draws from system entropy.
    """

    __test__ = False  # not a pytest test class despite the name

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)
        self.seed = seed
        self._records: List[Dict[str, Any]] = []
        self._raw_count = 0
        self._group_ids = OrderedIdSet()
        self._coupon_codes = OrderedIdSet()
        self._media_ids = OrderedIdSet()

    def ingest(self, response: ResponseEnvelope | Dict[str, Any] | None) -> None:
        """Replace the index with the records of a list response.

        Accepts an envelope or a raw `{"status", "data"}` body. When `data`
        is not a list the call is a no-op and the previous index survives.
        """
        data = _list_payload(response)
        if data is None:
            logger.debug("ingest skipped: payload is not a list")
            return

        self.clear()
        self._raw_count = len(data)
        for record in data:
            if not isinstance(record, dict):
                continue
            self._records.append(record)
            self._group_ids.add(resolve_relation(record.get("group")))
            code = record.get("code")
            if code:
                self._coupon_codes.add(str(code))
            for media in _as_list(record.get("media")):
                self._media_ids.add(resolve_relation(media))

        logger.info(
            "Indexed %d records: %d group ids, %d coupon codes, %d media ids",
            len(self._records),
            len(self._group_ids),
            len(self._coupon_codes),
            len(self._media_ids),
        )

    def clear(self) -> None:
        self._records = []
        self._raw_count = 0
        self._group_ids = OrderedIdSet()
        self._coupon_codes = OrderedIdSet()
        self._media_ids = OrderedIdSet()

    # ---- accessors ------------------------------------------------------------
    def all_group_ids(self) -> List[str]:
        return self._group_ids.to_list()

    def all_coupon_codes(self) -> List[str]:
        return self._coupon_codes.to_list()

    def all_media_ids(self) -> List[str]:
        return self._media_ids.to_list()

    def all_records(self) -> List[Dict[str, Any]]:
        return list(self._records)

    def first_group_id(self) -> Optional[str]:
        return self._group_ids.to_list()[0] if self._group_ids else None

    def first_coupon_code(self) -> Optional[str]:
        return self._coupon_codes.to_list()[0] if self._coupon_codes else None

    def random_group_id(self) -> Optional[str]:
        return self._choice(self._group_ids.to_list())

    def random_coupon_code(self) -> Optional[str]:
        return self._choice(self._coupon_codes.to_list())

    def random_record(self) -> Optional[Dict[str, Any]]:
        return self._choice(self._records)

    def stats(self) -> DataStats:
        return DataStats(
            total_records=self._raw_count,
            unique_group_ids=len(self._group_ids),
            unique_coupon_codes=len(self._coupon_codes),
            unique_media_ids=len(self._media_ids),
        )

    def _choice(self, items: List[Any]) -> Any:
        if not items:
            return None
        return self._rng.choice(items)


@dataclass
class MediaIndex:
    """Values harvested from a media listing, used to drive filter scenarios."""

    ids: List[str] = field(default_factory=list)
    # Database id of each record, the key other endpoints take as a media reference.
    object_ids: List[str] = field(default_factory=list)
    titles: List[str] = field(default_factory=list)
    types: List[str] = field(default_factory=list)
    durations: List[float] = field(default_factory=list)
    views: List[int] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    dates: List[str] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "MediaIndex":
        ids, object_ids = OrderedIdSet(), OrderedIdSet()
        titles, types = OrderedIdSet(), OrderedIdSet()
        durations: List[float] = []
        views: List[int] = []
        categories, tags, dates = OrderedIdSet(), OrderedIdSet(), OrderedIdSet()

        for media in records:
            if not isinstance(media, dict):
                continue
            ids.add(resolve_relation(media.get("id")))
            ids.add(resolve_relation(media.get("_id")))
            object_ids.add(resolve_relation(media.get("_id")) or resolve_relation(media.get("id")))
            titles.add(media.get("title"))
            types.add(media.get("type"))
            if media.get("duration"):
                durations.append(media["duration"])
            if media.get("views") is not None:
                views.append(media["views"])
            dates.add(media.get("date_created"))
            dates.add(media.get("created_at"))
            for category in media.get("categories") or []:
                categories.add(_label(category))
            for tag in media.get("tags") or []:
                tags.add(_label(tag))

        return cls(
            ids=ids.to_list(),
            object_ids=object_ids.to_list(),
            titles=titles.to_list(),
            types=types.to_list(),
            durations=durations,
            views=views,
            categories=categories.to_list(),
            tags=tags.to_list(),
            dates=dates.to_list(),
        )

    @classmethod
    def from_response(cls, response: ResponseEnvelope | Dict[str, Any] | None) -> "MediaIndex":
        return cls.from_records(_list_payload(response) or [])

    def percentile(self, values: List[float], fraction: float) -> Optional[float]:
        """Value at `fraction` of the sorted list (floor index), or None if empty."""
        if not values:
            return None
        ordered = sorted(values)
        index = min(int(len(ordered) * fraction), len(ordered) - 1)
        return ordered[index]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _list_payload(response: ResponseEnvelope | Dict[str, Any] | None) -> Optional[List[Any]]:
    if response is None:
        return None
    if isinstance(response, ResponseEnvelope):
        data = response.data
    elif isinstance(response, dict):
        data = response.get("data")
    else:
        return None
    return data if isinstance(data, list) else None
