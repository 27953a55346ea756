from dataclasses import replace

import pytest

from proxyguard.security.challenge_config import default_config
from proxyguard.security.challenge_page import (
    content_security_policy,
    escape_js,
    render_challenge_page,
    safe_return_path,
)

NONCE = "n0nce-value"
ATTACK = "</script><script>alert(1)</script>'\"&"


def _config(**overrides):
    base = replace(default_config(), enabled=True, site_key="site-key", secret_key="secret")
    return replace(base, **overrides)


def _script_block(page: str) -> str:
    start = page.index(f'<script nonce="{NONCE}">')
    return page[start : page.index("</script>", start)]


def test_escape_js_neutralises_breakouts():
    escaped = escape_js("a\\b'c\"d\ne\rf\u2028g\u2029h<i>j&k")
    assert escaped == "a\\\\b\\'c\\\"d\\ne\\rf\\u2028g\\u2029h\\x3ci\\x3ej\\x26k"


@pytest.mark.parametrize("field", ["page_title", "page_message", "site_key"])
def test_operator_values_cannot_break_out(field):
    page = render_challenge_page(_config(**{field: ATTACK}), "host-a", "bot_filter", NONCE)

    assert "<script>alert(1)</script>" not in page
    assert "&lt;/script&gt;&lt;script&gt;alert(1)&lt;/script&gt;" in page
    # Inside the inline script only escaped forms appear.
    assert "\\x3c/script\\x3e" in _script_block(page)


def test_v3_site_key_is_escaped_in_script_src():
    page = render_challenge_page(
        _config(challenge_type="recaptcha_v3", site_key='k"><script>x()</script>'),
        None,
        "bot_filter",
        NONCE,
    )
    assert 'render=k%22%3E%3Cscript%3Ex%28%29%3C%2Fscript%3E"' in page
    assert "<script>x()</script>" not in page


def test_request_values_are_escaped():
    page = render_challenge_page(_config(), "h'1</script>", "r\n'x", NONCE, return_url="/ok'</script>")
    script = _script_block(page)

    assert "const proxyHostId = 'h\\'1\\x3c/script\\x3e';" in script
    assert "const reason = 'r\\n\\'x';" in script
    assert "const returnUrl = '/ok\\'\\x3c/script\\x3e';" in script


@pytest.mark.parametrize(
    "challenge_type, marker",
    [
        ("recaptcha_v2", 'class="g-recaptcha" data-sitekey="site-key"'),
        ("recaptcha_v3", "https://www.google.com/recaptcha/api.js?render=site-key"),
        ("hcaptcha", 'class="h-captcha" data-sitekey="site-key"'),
        ("turnstile", 'class="cf-turnstile" data-sitekey="site-key"'),
    ],
)
def test_widget_per_provider(challenge_type, marker):
    page = render_challenge_page(_config(challenge_type=challenge_type), None, "bot_filter", NONCE)
    assert marker in page


def test_no_inline_event_handlers_and_nonce_everywhere():
    page = render_challenge_page(_config(), None, "bot_filter", NONCE)

    assert "onclick=" not in page
    assert "onload=" not in page
    assert f'<style nonce="{NONCE}">' in page
    assert f'<script nonce="{NONCE}">' in page


def test_cookie_contract():
    script = _script_block(render_challenge_page(_config(), None, "bot_filter", NONCE))

    assert "'ng_challenge=' + encodeURIComponent(data.token)" in script
    assert "'; path=/; expires=' + expires + '; SameSite=Lax'" in script
    assert "window.location.protocol === 'https:'" in script


def test_languages_and_defaults():
    page = render_challenge_page(_config(), None, "bot_filter", NONCE, default_language="ko")
    assert "const defaultLang = 'ko';" in page
    assert "const customCopy = false;" in page
    assert "보안 확인" in page

    unknown = render_challenge_page(_config(), None, "bot_filter", NONCE, default_language="fr")
    assert "const defaultLang = 'en';" in unknown


def test_custom_copy_is_flagged():
    page = render_challenge_page(_config(page_title="Hold on"), None, "bot_filter", NONCE)
    assert "const customCopy = true;" in page
    assert "<h1 id=\"title\">Hold on</h1>" in page


def test_dark_theme():
    page = render_challenge_page(_config(theme="dark"), None, "bot_filter", NONCE)
    assert 'data-theme="dark"' in page
    assert "background: #1e293b;" in page


@pytest.mark.parametrize(
    "value, expected",
    [
        ("/account?tab=1", "/account?tab=1"),
        (None, "/"),
        ("", "/"),
        ("https://evil.example/", "/"),
        ("//evil.example/", "/"),
        ("/\\evil.example", "/"),
        ("javascript:alert(1)", "/"),
        ("/ok\r\nSet-Cookie: x", "/"),
    ],
)
def test_safe_return_path(value, expected):
    assert safe_return_path(value) == expected


def test_csp_allows_only_the_chosen_provider():
    turnstile = content_security_policy("turnstile", NONCE)
    assert f"script-src 'nonce-{NONCE}' https://challenges.cloudflare.com;" in turnstile
    assert "google.com" not in turnstile
    assert "hcaptcha" not in turnstile

    recaptcha = content_security_policy("recaptcha_v3", NONCE)
    assert "https://www.google.com" in recaptcha
    assert "cloudflare" not in recaptcha
    assert "frame-ancestors 'none'" in recaptcha
