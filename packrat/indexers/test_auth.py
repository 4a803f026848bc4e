from __future__ import annotations

from pathlib import Path

import pytest

from packrat.config import IndexConfig
from packrat.errors import IndexNetworkError
from packrat.indexers.auth import apply_auth, authenticate, check_login_needed, required_credentials, verify_auth
from packrat.indexers.definition import ApiKeyAuth, BasicAuth, CookieAuth, FormAuth, NoAuth, PasskeyAuth


class _FakeResponseCtx:
    def __init__(self, *, status: int = 200, body: str = "") -> None:
        self.status = status
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self) -> str:
        return self._body


class _FakeSession:
    def __init__(self, response: _FakeResponseCtx) -> None:
        self._response = response
        self.posts: list[tuple[str, dict]] = []
        self.gets: list[tuple[str, dict]] = []

    def post(self, url: str, data=None):
        self.posts.append((url, dict(data or {})))
        return self._response

    def get(self, url: str, cookies=None):
        self.gets.append((url, dict(cookies or {})))
        return self._response


def _config(**kwargs) -> IndexConfig:
    return IndexConfig(definition=Path("demo.toml"), **kwargs)


def test_api_key_goes_in_param_or_header() -> None:
    config = _config(api_key="k-123")

    assert apply_auth(ApiKeyAuth(method="api_key"), config).params == {"apikey": "k-123"}
    assert apply_auth(ApiKeyAuth(method="api_key", header="X-Api-Key"), config).headers == {"X-Api-Key": "k-123"}


def test_cookie_and_passkey_artifacts() -> None:
    config = _config(cookie="uid=7; pass=abc; junk", passkey="pk")

    assert apply_auth(CookieAuth(method="cookie"), config).cookies == {"uid": "7", "pass": "abc"}
    assert apply_auth(PasskeyAuth(method="passkey", param="torrent_pass"), config).params == {"torrent_pass": "pk"}


def test_basic_auth_header() -> None:
    artifacts = apply_auth(BasicAuth(method="basic"), _config(username="user", password="pw"))

    assert artifacts.headers == {"Authorization": "Basic dXNlcjpwdw=="}


def test_required_credentials_per_method() -> None:
    assert required_credentials(NoAuth()) == ()
    assert required_credentials(FormAuth(method="form", path="login.php")) == ("username", "password")
    assert required_credentials(ApiKeyAuth(method="api_key")) == ("api_key",)


def test_login_needed_detection() -> None:
    form = FormAuth(method="form", path="login.php")

    assert check_login_needed(NoAuth(), 403, "") is False
    assert check_login_needed(ApiKeyAuth(method="api_key"), 401, "") is True
    assert check_login_needed(ApiKeyAuth(method="api_key"), 200, "login.php") is False
    assert check_login_needed(form, 200, '<form action="login.php">') is True
    assert check_login_needed(form, 200, "<rss></rss>") is False


@pytest.mark.asyncio
async def test_form_login_posts_expanded_inputs() -> None:
    auth = FormAuth(
        method="form",
        path="takelogin.php",
        inputs={"username": "{{ .Config.username }}", "password": "{{ .Config.password }}", "keeplogged": "1"},
    )
    session = _FakeSession(_FakeResponseCtx(body="welcome back"))

    await authenticate(auth, session, "https://demo.example/", _config(username="u", password="p"))

    assert session.posts == [
        ("https://demo.example/takelogin.php", {"username": "u", "password": "p", "keeplogged": "1"})
    ]


@pytest.mark.asyncio
async def test_form_login_error_text_raises() -> None:
    auth = FormAuth(method="form", path="login.php", error_text="Invalid password")
    session = _FakeSession(_FakeResponseCtx(body="<p>Invalid password</p>"))

    with pytest.raises(IndexNetworkError, match="Login rejected"):
        await authenticate(auth, session, "https://demo.example/", _config(username="u", password="p"))


@pytest.mark.asyncio
async def test_verify_reports_missing_credentials_without_io() -> None:
    session = _FakeSession(_FakeResponseCtx())

    ok, reason = await verify_auth(BasicAuth(method="basic"), session, "https://demo.example/", _config(username="u"))

    assert ok is False
    assert reason == "Missing credentials: password"
    assert session.gets == []


@pytest.mark.asyncio
async def test_verify_cookie_session_against_test_path() -> None:
    auth = CookieAuth(method="cookie", test_path="index.php")
    session = _FakeSession(_FakeResponseCtx(body="please visit login.php"))

    ok, reason = await verify_auth(auth, session, "https://demo.example/", _config(cookie="uid=1"))

    assert ok is False
    assert "logged out" in reason
    assert session.gets == [("https://demo.example/index.php", {"uid": "1"})]
