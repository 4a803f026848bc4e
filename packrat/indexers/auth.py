"""
Index authentication, one interpreter per operation over the login union.

Each function handles every login method explicitly; adding a method to
``IndexAuth`` without teaching these functions fails loudly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urljoin

import aiohttp

from packrat.config import IndexConfig
from packrat.errors import IndexNetworkError
from packrat.indexers.definition import (
    ApiKeyAuth,
    BasicAuth,
    CookieAuth,
    FormAuth,
    IndexAuth,
    NoAuth,
    PasskeyAuth,
)
from packrat.indexers.templates import TemplateContext, expand

_AUTH_FAILURE_STATUSES = {401, 403}


@dataclass
class AuthArtifacts:
    """What to attach to every request for an index."""

    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)


def _parse_cookie_header(cookie: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for part in cookie.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name:
            cookies[name] = value
    return cookies


def _unsupported(auth: object) -> TypeError:
    return TypeError(f"Unhandled login method: {type(auth).__name__}")


def required_credentials(auth: IndexAuth) -> tuple[str, ...]:
    if isinstance(auth, NoAuth):
        return ()
    if isinstance(auth, CookieAuth):
        return ("cookie",)
    if isinstance(auth, ApiKeyAuth):
        return ("api_key",)
    if isinstance(auth, PasskeyAuth):
        return ("passkey",)
    if isinstance(auth, (FormAuth, BasicAuth)):
        return ("username", "password")
    raise _unsupported(auth)


def apply_auth(auth: IndexAuth, config: IndexConfig) -> AuthArtifacts:
    """Headers, params and cookies a request needs. Form logins rely on session cookies instead."""
    if isinstance(auth, (NoAuth, FormAuth)):
        return AuthArtifacts()
    if isinstance(auth, CookieAuth):
        return AuthArtifacts(cookies=_parse_cookie_header(config.cookie))
    if isinstance(auth, ApiKeyAuth):
        if auth.header:
            return AuthArtifacts(headers={auth.header: config.api_key})
        return AuthArtifacts(params={auth.param: config.api_key})
    if isinstance(auth, PasskeyAuth):
        return AuthArtifacts(params={auth.param: config.passkey})
    if isinstance(auth, BasicAuth):
        encoded = aiohttp.BasicAuth(config.username, config.password).encode()
        return AuthArtifacts(headers={"Authorization": encoded})
    raise _unsupported(auth)


def check_login_needed(auth: IndexAuth, status: int, body: str) -> bool:
    """True when a response shows the session is not (or no longer) authenticated."""
    if isinstance(auth, NoAuth):
        return False
    if isinstance(auth, (ApiKeyAuth, PasskeyAuth, BasicAuth)):
        return status in _AUTH_FAILURE_STATUSES
    if isinstance(auth, CookieAuth):
        return status in _AUTH_FAILURE_STATUSES or "login.php" in body.lower()
    if isinstance(auth, FormAuth):
        if status in _AUTH_FAILURE_STATUSES:
            return True
        lowered = body.lower()
        return any(marker.lower() in lowered for marker in auth.logged_out_markers)
    raise _unsupported(auth)


async def authenticate(
    auth: IndexAuth,
    session: aiohttp.ClientSession,
    base_url: str,
    config: IndexConfig,
) -> None:
    """Establish a session. Only form logins do any I/O."""
    if isinstance(auth, (NoAuth, CookieAuth, ApiKeyAuth, PasskeyAuth, BasicAuth)):
        return
    if isinstance(auth, FormAuth):
        context = TemplateContext(
            {
                ".Config.username": config.username,
                ".Config.password": config.password,
                ".Config.sitelink": base_url,
            }
        )
        form = {key: expand(value, context) for key, value in auth.inputs.items()}
        url = urljoin(base_url, auth.path)
        async with session.post(url, data=form) as response:
            body = await response.text()
            if response.status >= 400:
                raise IndexNetworkError(base_url, f"Login failed with status {response.status}", response.status)
            if auth.error_text and auth.error_text.lower() in body.lower():
                raise IndexNetworkError(base_url, "Login rejected by index")
        return
    raise _unsupported(auth)


async def verify_auth(
    auth: IndexAuth,
    session: aiohttp.ClientSession,
    base_url: str,
    config: IndexConfig,
) -> tuple[bool, str]:
    """Check credentials are present and, where the method allows, still accepted."""
    missing = [name for name in required_credentials(auth) if not getattr(config, name)]
    if missing:
        return False, f"Missing credentials: {', '.join(missing)}"
    if isinstance(auth, (NoAuth, ApiKeyAuth, PasskeyAuth, BasicAuth)):
        return True, ""
    if isinstance(auth, (CookieAuth, FormAuth)):
        if not auth.test_path:
            return True, ""
        artifacts = apply_auth(auth, config)
        async with session.get(urljoin(base_url, auth.test_path), cookies=artifacts.cookies) as response:
            body = await response.text()
            if check_login_needed(auth, response.status, body):
                return False, "Index reports the session is logged out"
        return True, ""
    raise _unsupported(auth)
