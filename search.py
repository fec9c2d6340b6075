import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import serialize_doc

PAGE_SIZE = 5

# BSON integers are signed 64-bit.
MAX_INT64 = 2 ** 63 - 1
MAX_PAGE = MAX_INT64 // PAGE_SIZE

SORT_OPTIONS = {
    "starRating": [("starRating", DESCENDING)],
    "pricePerNightAsc": [("pricePerNight", ASCENDING)],
    "pricePerNightDesc": [("pricePerNight", DESCENDING)],
}

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")

QueryValue = Union[str, Sequence[str], None]


def parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse: "12abc" -> 12, "abc" -> None.

    Values outside the signed 64-bit range are treated as invalid.
    """
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    number = int(match.group(1))
    if not -MAX_INT64 - 1 <= number <= MAX_INT64:
        return None
    return number


def _as_list(value: QueryValue) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        values = [value]
    else:
        values = list(value)
    return [v for v in values if v not in (None, "")]


def build_search_filter(params: Mapping[str, QueryValue]) -> Dict[str, Any]:
    """Translate search query parameters into a MongoDB filter.

    Filters combine with AND; missing or unparsable values are skipped.
    """
    query: Dict[str, Any] = {}

    destination = params.get("destination")
    if isinstance(destination, str) and destination.strip():
        pattern = re.escape(destination.strip())
        query["$or"] = [
            {"city": {"$regex": pattern, "$options": "i"}},
            {"country": {"$regex": pattern, "$options": "i"}},
        ]

    facilities = _as_list(params.get("facilities"))
    if facilities:
        query["facilities"] = {"$all": facilities}

    types = _as_list(params.get("types"))
    if types:
        query["type"] = {"$in": types}

    stars = [s for s in (parse_int(v) for v in _as_list(params.get("stars"))) if s is not None]
    if stars:
        query["starRating"] = {"$in": stars}

    max_price = parse_int(params.get("maxPrice"))
    if max_price is not None:
        query["pricePerNight"] = {"$lte": max_price}

    adults = parse_int(params.get("adultCount"))
    if adults is not None:
        query["adultCount"] = {"$gte": adults}

    children = parse_int(params.get("childCount"))
    if children is not None:
        query["childCount"] = {"$gte": children}

    return query


def build_sort(sort_option: Optional[str]) -> List[tuple]:
    return SORT_OPTIONS.get(sort_option or "", [])


def parse_page(value: Any) -> int:
    page = parse_int(value)
    if page is None or page < 1:
        return 1
    return min(page, MAX_PAGE)


def search_hotels(db: Database, params: Mapping[str, QueryValue]) -> Dict[str, Any]:
    query = build_search_filter(params)
    sort = build_sort(params.get("sortOption"))
    page = parse_page(params.get("page"))

    cursor = db["hotels"].find(query)
    if sort:
        cursor = cursor.sort(sort)
    hotels = cursor.skip((page - 1) * PAGE_SIZE).limit(PAGE_SIZE)
    total = db["hotels"].count_documents(query)

    return {
        "data": [serialize_doc(h) for h in hotels],
        "pagination": {
            "total": total,
            "page": page,
            "pages": math.ceil(total / PAGE_SIZE),
        },
    }
