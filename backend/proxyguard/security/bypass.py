"""
Requests that skip the challenge before any token is looked at.

Two cases: the edge already cleared the request by country (``X-Geo-Blocked:
0``, set by nginx on the internal auth_request hop, never trusted from
browsers because the public listener strips it), and search-engine crawlers,
which must stay able to index protected sites.
"""

from __future__ import annotations

import re
from typing import Optional

GEO_HEADER = "X-Geo-Blocked"
GEO_ALLOWED_VALUE = "0"

SEARCH_BOT_PATTERN = re.compile(
    r"(Googlebot|Googlebot-Mobile|Googlebot-Image|Googlebot-News|Googlebot-Video"
    r"|AdsBot-Google|AdsBot-Google-Mobile|Mediapartners-Google|APIs-Google"
    r"|FeedFetcher-Google|Google-Read-Aloud|DuplexWeb-Google|Storebot-Google"
    r"|Google-InspectionTool|GoogleOther|bingbot|msnbot|BingPreview|Slurp"
    r"|DuckDuckBot|Baiduspider|YandexBot|yandex|Sogou|Exabot|facebot|ia_archiver"
    r"|applebot|naverbot|Yeti|seznambot|petalbot|360spider|qwantify)",
    re.IGNORECASE,
)

BYPASS_GEO_ALLOWED = "geo_allowed"
BYPASS_SEARCH_BOT = "search_bot"


def is_search_bot(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return SEARCH_BOT_PATTERN.search(user_agent) is not None


def is_geo_allowed(geo_blocked: Optional[str]) -> bool:
    return (geo_blocked or "").strip() == GEO_ALLOWED_VALUE


def bypass_reason(
    user_agent: Optional[str],
    geo_blocked: Optional[str],
    trust_geo_header: bool = True,
) -> Optional[str]:
    """Return why the request may skip the challenge, or ``None``."""
    if trust_geo_header and is_geo_allowed(geo_blocked):
        return BYPASS_GEO_ALLOWED
    if is_search_bot(user_agent):
        return BYPASS_SEARCH_BOT
    return None


__all__ = [
    "GEO_HEADER",
    "SEARCH_BOT_PATTERN",
    "BYPASS_GEO_ALLOWED",
    "BYPASS_SEARCH_BOT",
    "is_search_bot",
    "is_geo_allowed",
    "bypass_reason",
]
