"""
HTML for the public challenge page.

The page is unauthenticated and embeds operator-supplied values (site key,
title, message) as well as request-supplied ones (host id, reason, return
path). Each value is escaped for the context it lands in: ``escape_html`` for
element text and attribute values, ``escape_js`` for single-quoted string
literals inside the inline script. The inline script and style carry a
per-response nonce that the route also puts into its Content-Security-Policy.
"""

from __future__ import annotations

import html
import secrets
from string import Template
from typing import Dict, Optional
from urllib.parse import quote

from proxyguard.security.challenge_config import (
    DEFAULT_PAGE_MESSAGE,
    DEFAULT_PAGE_TITLE,
    EffectiveConfig,
)

SUPPORTED_LANGUAGES = ("en", "ko")

_JS_ESCAPES = (
    ("\\", "\\\\"),
    ("'", "\\'"),
    ('"', '\\"'),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
    ("<", "\\x3c"),
    (">", "\\x3e"),
    ("&", "\\x26"),
)


def escape_js(value: Optional[str]) -> str:
    """Escape for a quoted JavaScript string literal inside a <script> block."""
    out = value or ""
    for raw, escaped in _JS_ESCAPES:
        out = out.replace(raw, escaped)
    return out


def escape_html(value: Optional[str]) -> str:
    return html.escape(value or "", quote=True)


def new_nonce() -> str:
    return secrets.token_urlsafe(16)


def safe_return_path(value: Optional[str]) -> str:
    """Only same-origin absolute paths are followed after a solve."""
    if not value or not value.startswith("/"):
        return "/"
    if value.startswith("//") or value.startswith("/\\"):
        return "/"
    if any(ch in value for ch in "\r\n\t"):
        return "/"
    return value


# Provider script, widget markup and the JS that resets a checkbox widget.
_WIDGETS: Dict[str, Dict[str, str]] = {
    "recaptcha_v2": {
        "script": '<script src="https://www.google.com/recaptcha/api.js" async defer></script>',
        "widget": (
            '<div class="g-recaptcha" data-sitekey="$site_key" data-theme="$theme"'
            ' data-callback="onCaptchaSuccess"></div>'
        ),
        "reset": "grecaptcha",
    },
    "recaptcha_v3": {
        "script": '<script src="https://www.google.com/recaptcha/api.js?render=$site_key_url"></script>',
        "widget": '<div id="recaptcha-v3-notice"></div>',
        "reset": "",
    },
    "hcaptcha": {
        "script": '<script src="https://js.hcaptcha.com/1/api.js" async defer></script>',
        "widget": (
            '<div class="h-captcha" data-sitekey="$site_key" data-theme="$theme"'
            ' data-callback="onCaptchaSuccess"></div>'
        ),
        "reset": "hcaptcha",
    },
    "turnstile": {
        "script": '<script src="https://challenges.cloudflare.com/turnstile/v0/api.js" async defer></script>',
        "widget": (
            '<div class="cf-turnstile" data-sitekey="$site_key" data-theme="$theme"'
            ' data-callback="onCaptchaSuccess"></div>'
        ),
        "reset": "turnstile",
    },
}

_CSP_SOURCES: Dict[str, Dict[str, str]] = {
    "recaptcha": {
        "script": "https://www.google.com https://www.gstatic.com",
        "frame": "https://www.google.com https://recaptcha.google.com",
        "connect": "https://www.google.com",
    },
    "hcaptcha": {
        "script": "https://hcaptcha.com https://*.hcaptcha.com",
        "frame": "https://hcaptcha.com https://*.hcaptcha.com",
        "connect": "https://hcaptcha.com https://*.hcaptcha.com",
    },
    "turnstile": {
        "script": "https://challenges.cloudflare.com",
        "frame": "https://challenges.cloudflare.com",
        "connect": "https://challenges.cloudflare.com",
    },
}

_THEMES: Dict[str, Dict[str, str]] = {
    "light": {
        "background": "#f8fafc",
        "text": "#1e293b",
        "card": "#ffffff",
        "subtext": "#64748b",
        "notice": "#f1f5f9",
        "spinner": "#f3f3f3",
        "border": "#e2e8f0",
        "hover": "#f1f5f9",
    },
    "dark": {
        "background": "#1e293b",
        "text": "#f1f5f9",
        "card": "#334155",
        "subtext": "#94a3b8",
        "notice": "#1e293b",
        "spinner": "#475569",
        "border": "#475569",
        "hover": "#475569",
    },
}


def _provider_family(challenge_type: str) -> str:
    if challenge_type.startswith("recaptcha"):
        return "recaptcha"
    return challenge_type if challenge_type in _CSP_SOURCES else "recaptcha"


def content_security_policy(challenge_type: str, nonce: str) -> str:
    sources = _CSP_SOURCES[_provider_family(challenge_type)]
    return (
        "default-src 'none'; "
        f"script-src 'nonce-{nonce}' {sources['script']}; "
        "style-src 'self' 'unsafe-inline'; "
        f"img-src 'self' data: {sources['script']}; "
        f"frame-src {sources['frame']}; "
        f"connect-src 'self' {sources['connect']}; "
        "base-uri 'none'; "
        "form-action 'self'; "
        "frame-ancestors 'none'"
    )


_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="robots" content="noindex, nofollow">
    <meta name="description" content="$page_message">
    <title>$page_title - Nginx Proxy Guard</title>
    <link rel="icon" type="image/x-icon" href="$favicon_url">
    $captcha_script
    <style nonce="$nonce">
        * { box-sizing: border-box; margin: 0; padding: 0; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
            background: $c_background;
            color: $c_text;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 20px;
        }
        .container {
            background: $c_card;
            border-radius: 16px;
            padding: 40px;
            max-width: 480px;
            width: 100%;
            text-align: center;
            box-shadow: 0 4px 6px -1px rgba(0, 0, 0, 0.1), 0 2px 4px -1px rgba(0, 0, 0, 0.06);
        }
        .logo { width: 80px; height: 80px; margin: 0 auto 24px; }
        .logo img { width: 100%; height: 100%; object-fit: contain; }
        .brand { font-size: 0.75rem; color: $c_subtext; margin-bottom: 20px; letter-spacing: 0.5px; }
        h1 { font-size: 1.5rem; margin-bottom: 12px; font-weight: 600; }
        p.message { color: $c_subtext; margin-bottom: 28px; line-height: 1.6; font-size: 0.95rem; }
        .g-recaptcha, .h-captcha, .cf-turnstile { display: inline-block; margin-bottom: 20px; }
        #recaptcha-v3-notice { padding: 16px; background: $c_notice; border-radius: 8px; margin-bottom: 20px; color: $c_subtext; }
        .error { color: #ef4444; margin-top: 12px; display: none; font-size: 0.9rem; }
        .success { color: #22c55e; margin-top: 12px; display: none; font-size: 0.9rem; }
        .loading { display: none; margin-top: 12px; }
        .spinner {
            border: 3px solid $c_spinner;
            border-top: 3px solid #3b82f6;
            border-radius: 50%;
            width: 24px;
            height: 24px;
            animation: spin 1s linear infinite;
            margin: 0 auto;
        }
        @keyframes spin { 0% { transform: rotate(0deg); } 100% { transform: rotate(360deg); } }
        .footer { margin-top: 28px; font-size: 0.8rem; color: $c_subtext; line-height: 1.5; }
        .lang-switch { margin-top: 16px; }
        .lang-switch button {
            background: transparent;
            border: 1px solid $c_border;
            color: $c_subtext;
            padding: 4px 12px;
            border-radius: 6px;
            cursor: pointer;
            font-size: 0.75rem;
            margin: 0 4px;
        }
        .lang-switch button:hover { background: $c_hover; }
        .lang-switch button.active { background: #3b82f6; color: white; border-color: #3b82f6; }
    </style>
</head>
<body>
    <main class="container" aria-label="$page_title">
        <div class="logo"><img src="$favicon_url" alt="Nginx Proxy Guard"></div>
        <div class="brand">NGINX PROXY GUARD</div>
        <h1 id="title">$page_title</h1>
        <p class="message" id="message">$page_message</p>

        $captcha_widget

        <div class="loading"><div class="spinner"></div></div>
        <div class="error" id="error" role="alert"></div>
        <div class="success" id="success"></div>

        <div class="footer"><span id="footer-text"></span></div>

        <div class="lang-switch">
            <button type="button" data-lang="ko" id="lang-ko">한국어</button>
            <button type="button" data-lang="en" id="lang-en">English</button>
        </div>
    </main>

    <script nonce="$nonce">
        const proxyHostId = '$js_proxy_host_id';
        const reason = '$js_reason';
        const challengeType = '$js_challenge_type';
        const siteKey = '$js_site_key';
        const verifyUrl = '$js_verify_url';
        const returnUrl = '$js_return_url';
        const defaultLang = '$js_default_lang';
        const resetTarget = '$js_reset_target';
        const customCopy = $custom_copy;
        const pageTitle = '$js_page_title';
        const pageMessage = '$js_page_message';
        const forceSecureCookie = $force_secure;

        const i18n = {
            ko: {
                title: '보안 확인',
                message: '계속하려면 아래 보안 확인을 완료해주세요.',
                verifying: '확인 중...',
                success: '인증 완료! 이동 중...',
                error: '인증에 실패했습니다. 다시 시도해주세요.',
                networkError: '오류가 발생했습니다. 다시 시도해주세요.',
                footer: '이 보안 확인은 자동화된 접근으로부터 보호합니다.'
            },
            en: {
                title: 'Security Check',
                message: 'Please complete the security check below to continue.',
                verifying: 'Verifying...',
                success: 'Verified! Redirecting...',
                error: 'Verification failed. Please try again.',
                networkError: 'An error occurred. Please try again.',
                footer: 'This security check helps protect against automated access.'
            }
        };

        function detectLang() {
            let saved = null;
            try { saved = localStorage.getItem('npg_lang'); } catch (e) { saved = null; }
            if (saved && i18n[saved]) return saved;
            const browserLang = (navigator.language || '').split('-')[0];
            if (i18n[browserLang]) return browserLang;
            return i18n[defaultLang] ? defaultLang : 'en';
        }

        let currentLang = detectLang();

        function t(key) {
            return i18n[currentLang][key] || i18n['en'][key] || key;
        }

        function updateTexts() {
            document.getElementById('title').textContent = customCopy ? pageTitle : t('title');
            document.getElementById('message').textContent = customCopy ? pageMessage : t('message');
            document.getElementById('footer-text').textContent = t('footer');
            document.getElementById('success').textContent = t('success');
            const v3Notice = document.getElementById('recaptcha-v3-notice');
            if (v3Notice) v3Notice.textContent = t('verifying');
        }

        function setLang(lang) {
            if (!i18n[lang]) return;
            currentLang = lang;
            try { localStorage.setItem('npg_lang', lang); } catch (e) { /* storage disabled */ }
            updateTexts();
            document.querySelectorAll('.lang-switch button').forEach(function (btn) {
                btn.classList.toggle('active', btn.getAttribute('data-lang') === lang);
            });
        }

        document.querySelectorAll('.lang-switch button').forEach(function (btn) {
            btn.addEventListener('click', function () { setLang(btn.getAttribute('data-lang')); });
        });
        setLang(currentLang);

        function showError(msg) {
            document.getElementById('error').textContent = msg;
            document.getElementById('error').style.display = 'block';
            document.querySelector('.loading').style.display = 'none';
        }

        function showSuccess() {
            document.getElementById('success').textContent = t('success');
            document.getElementById('success').style.display = 'block';
            document.querySelector('.loading').style.display = 'none';
        }

        function showLoading() {
            document.querySelector('.loading').style.display = 'block';
            document.getElementById('error').style.display = 'none';
        }

        function resetWidget() {
            const widget = window[resetTarget];
            if (resetTarget && widget && typeof widget.reset === 'function') widget.reset();
        }

        async function verifyCaptcha(token) {
            showLoading();
            try {
                const response = await fetch(verifyUrl, {
                    method: 'POST',
                    credentials: 'same-origin',
                    headers: { 'Content-Type': 'application/json' },
                    body: JSON.stringify({ token: token, proxy_host_id: proxyHostId, challenge_reason: reason })
                });
                const data = await response.json();
                if (data.success) {
                    const expires = new Date(data.expires_at).toUTCString();
                    const secure = forceSecureCookie || window.location.protocol === 'https:';
                    document.cookie = 'ng_challenge=' + encodeURIComponent(data.token) +
                        '; path=/; expires=' + expires + '; SameSite=Lax' + (secure ? '; Secure' : '');
                    showSuccess();
                    setTimeout(function () { window.location.href = returnUrl; }, 1000);
                } else {
                    showError(t('error'));
                    resetWidget();
                }
            } catch (err) {
                showError(t('networkError'));
                resetWidget();
            }
        }

        function onCaptchaSuccess(token) {
            verifyCaptcha(token);
        }
        window.onCaptchaSuccess = onCaptchaSuccess;

        if (challengeType === 'recaptcha_v3' && typeof grecaptcha !== 'undefined') {
            grecaptcha.ready(function () {
                grecaptcha.execute(siteKey, { action: 'challenge' }).then(verifyCaptcha);
            });
        }
    </script>
</body>
</html>
""")


ACCESS_DENIED_PAGE = (
    "<!DOCTYPE html><html><head><title>Access Denied</title></head>"
    "<body><h1>Access Denied</h1><p>Your request has been blocked.</p></body></html>"
)

ERROR_PAGE = (
    "<!DOCTYPE html><html><head><title>Error</title></head>"
    "<body><h1>Error</h1><p>An error occurred.</p></body></html>"
)


def render_challenge_page(
    config: EffectiveConfig,
    proxy_host_id: Optional[str],
    reason: str,
    nonce: str,
    return_url: Optional[str] = None,
    default_language: str = "en",
    api_prefix: str = "/api/v1",
    force_secure_cookie: bool = False,
) -> str:
    challenge_type = config.challenge_type if config.challenge_type in _WIDGETS else "recaptcha_v2"
    theme = config.theme if config.theme in _THEMES else "light"
    widget = _WIDGETS[challenge_type]

    attr_values = {
        "site_key": escape_html(config.site_key),
        "site_key_url": escape_html(quote(config.site_key, safe="")),
        "theme": escape_html(theme),
    }
    captcha_script = Template(widget["script"]).substitute(attr_values)
    captcha_widget = Template(widget["widget"]).substitute(attr_values)

    custom_copy = (
        config.page_title != DEFAULT_PAGE_TITLE or config.page_message != DEFAULT_PAGE_MESSAGE
    )
    language = default_language if default_language in SUPPORTED_LANGUAGES else "en"
    colors = {f"c_{key}": value for key, value in _THEMES[theme].items()}

    return _PAGE.substitute(
        nonce=escape_html(nonce),
        page_title=escape_html(config.page_title),
        page_message=escape_html(config.page_message),
        favicon_url=escape_html(f"{api_prefix}/challenge/favicon.ico"),
        captcha_script=captcha_script,
        captcha_widget=captcha_widget,
        js_proxy_host_id=escape_js(proxy_host_id or ""),
        js_reason=escape_js(reason),
        js_challenge_type=escape_js(challenge_type),
        js_site_key=escape_js(config.site_key),
        js_verify_url=escape_js(f"{api_prefix}/challenge/verify"),
        js_return_url=escape_js(safe_return_path(return_url)),
        js_default_lang=escape_js(language),
        js_reset_target=escape_js(widget["reset"]),
        js_page_title=escape_js(config.page_title),
        js_page_message=escape_js(config.page_message),
        custom_copy="true" if custom_copy else "false",
        force_secure="true" if force_secure_cookie else "false",
        **colors,
    )


__all__ = [
    "ACCESS_DENIED_PAGE",
    "ERROR_PAGE",
    "content_security_policy",
    "escape_html",
    "escape_js",
    "new_nonce",
    "render_challenge_page",
    "safe_return_path",
]
