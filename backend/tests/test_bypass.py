import pytest

from proxyguard.security.bypass import (
    BYPASS_GEO_ALLOWED,
    BYPASS_SEARCH_BOT,
    bypass_reason,
    is_search_bot,
)

BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/126.0 Safari/537.36"


@pytest.mark.parametrize(
    "user_agent",
    [
        "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
        "DuckDuckBot/1.1; (+http://duckduckgo.com/duckduckbot.html)",
        "Mozilla/5.0 (compatible; YandexBot/3.0; +http://yandex.com/bots)",
        "Mozilla/5.0 (compatible; Yeti/1.1; +http://naver.me/spd)",
        "mozilla/5.0 (compatible; GOOGLEBOT/2.1)",
    ],
)
def test_search_bots_are_recognised(user_agent):
    assert is_search_bot(user_agent) is True
    assert bypass_reason(user_agent, None) == BYPASS_SEARCH_BOT


@pytest.mark.parametrize("user_agent", [BROWSER_UA, "curl/8.5.0", "", None])
def test_regular_clients_are_not_bots(user_agent):
    assert is_search_bot(user_agent) is False
    assert bypass_reason(user_agent, None) is None


def test_geo_allowed_header():
    assert bypass_reason(BROWSER_UA, "0") == BYPASS_GEO_ALLOWED
    assert bypass_reason(BROWSER_UA, " 0 ") == BYPASS_GEO_ALLOWED
    assert bypass_reason(BROWSER_UA, "1") is None
    assert bypass_reason(BROWSER_UA, "") is None


def test_geo_header_can_be_distrusted():
    assert bypass_reason(BROWSER_UA, "0", trust_geo_header=False) is None
