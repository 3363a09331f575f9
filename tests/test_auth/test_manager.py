"""Tests for AuthManager: credential resolution, token caching, and device-flow login."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from copilot_auth.auth.credential_store import CredentialStore
from copilot_auth.auth.manager import AuthManager
from copilot_auth.exceptions import CredentialNotFoundError, DeviceFlowError, TokenExchangeError
from copilot_auth.models import (
    AuthConfig,
    CredentialKind,
    CredentialSource,
    DeviceFlowStatus,
    StoredCredential,
)

CODE_PATH = "/login/device/code"
ACCESS_PATH = "/login/oauth/access_token"
TOKEN_PATH = "/copilot_internal/v2/token"

DEVICE_CODE = {
    "device_code": "dc_123",
    "user_code": "ABCD-1234",
    "verification_uri": "https://github.com/login/device",
    "expires_in": 900,
    "interval": 5,
}


def _expires_in(minutes: float) -> int:
    """Epoch seconds *minutes* from now, as returned by the token endpoint."""
    return int(time.time() + minutes * 60)


def _token_body(token: str = "tid=fresh", minutes: float = 30) -> dict[str, Any]:
    return {"token": token, "expires_at": _expires_in(minutes), "refresh_in": 1500}


class CountingStore(CredentialStore):
    """CredentialStore that records how often it was consulted."""

    def __init__(self, credential: Optional[StoredCredential], local_path: Path) -> None:
        super().__init__(
            apps_path=local_path.parent / "apps.json",
            hosts_path=local_path.parent / "hosts.json",
            local_path=local_path,
        )
        self._credential = credential
        self.resolve_calls = 0

    def resolve(self, host: str) -> Optional[StoredCredential]:
        self.resolve_calls += 1
        return self._credential


@pytest.fixture()
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(
        apps_path=tmp_path / "apps.json",
        hosts_path=tmp_path / "hosts.json",
        local_path=tmp_path / ".copilot-auth.json",
    )


# -------------------------------------------------------------------------
# Credential resolution
# -------------------------------------------------------------------------


class TestCredentialResolution:
    def test_explicit_token_wins(
        self, store: CredentialStore, write_json: Callable[[Path, Any], Path]
    ) -> None:
        write_json(store.apps_path, {"github.com": {"oauth_token": "gho_from_disk"}})
        manager = AuthManager(AuthConfig(oauth_token="gho_explicit"), store=store)
        assert manager.has_oauth_token()
        assert manager.credential_source is CredentialSource.EXPLICIT
        assert manager.credential_kind is CredentialKind.OAUTH

    def test_resolved_from_store(
        self, store: CredentialStore, write_json: Callable[[Path, Any], Path]
    ) -> None:
        write_json(store.hosts_path, {"github.com:octocat": "ghu_hosts"})
        manager = AuthManager(store=store)
        assert manager.credential_source is CredentialSource.HOSTS
        assert manager.credential_kind is CredentialKind.USER_DELEGATED
        assert manager.masked_oauth_token() == "ghu_hosts..."

    def test_enterprise_domain_is_looked_up(
        self, store: CredentialStore, write_json: Callable[[Path, Any], Path]
    ) -> None:
        write_json(
            store.apps_path,
            {
                "github.com:Iv1.a": {"oauth_token": "gho_public"},
                "ghe.example.com:Iv1.a": {"oauth_token": "gho_enterprise"},
            },
        )
        manager = AuthManager(AuthConfig(enterprise_url="https://ghe.example.com"), store=store)
        assert manager.masked_oauth_token() == "gho_enterp..."

    def test_resolved_once(self, tmp_path: Path) -> None:
        cred = StoredCredential.build("github.com", "gho_x", CredentialSource.APPS)
        counting = CountingStore(cred, tmp_path / ".copilot-auth.json")
        manager = AuthManager(store=counting)
        manager.has_oauth_token()
        manager.has_oauth_token()
        assert counting.resolve_calls == 1

    def test_no_credential(self, store: CredentialStore) -> None:
        manager = AuthManager(store=store)
        assert not manager.has_oauth_token()
        assert manager.credential_source is None
        assert manager.credential_kind is None
        assert manager.masked_oauth_token() is None

    def test_copilot_headers_are_a_copy(self, store: CredentialStore) -> None:
        manager = AuthManager(store=store)
        headers = manager.get_copilot_headers()
        headers["User-Agent"] = "changed"
        assert manager.get_copilot_headers()["User-Agent"] == "GitHubCopilotChat/0.32.4"


# -------------------------------------------------------------------------
# get_valid_token
# -------------------------------------------------------------------------


class TestGetValidToken:
    async def test_no_credential_raises(self, store: CredentialStore, recorder) -> None:
        rec = recorder({})
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client)
            with pytest.raises(CredentialNotFoundError, match="initiate_device_flow"):
                await manager.get_valid_token()
        assert rec.requests == []

    async def test_exchanges_and_caches(self, store: CredentialStore, recorder) -> None:
        body = _token_body("tid=first")
        rec = recorder({TOKEN_PATH: [body]})
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            assert await manager.get_valid_token() == "tid=first"
            assert await manager.get_valid_token() == "tid=first"

        assert len(rec.requests) == 1
        assert rec.requests[0].headers["Authorization"] == "Bearer gho_x"
        assert manager.cached_token is not None
        assert manager.cached_token.expires_at == body["expires_at"] * 1000

    async def test_token_far_from_expiry_is_reused(self, store: CredentialStore, recorder) -> None:
        rec = recorder({TOKEN_PATH: [_token_body("tid=first", minutes=10), _token_body("tid=second")]})
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            await manager.get_valid_token()
            assert await manager.get_valid_token() == "tid=first"
        assert len(rec.requests) == 1

    async def test_token_near_expiry_is_refreshed(self, store: CredentialStore, recorder) -> None:
        rec = recorder({TOKEN_PATH: [_token_body("tid=first", minutes=4), _token_body("tid=second")]})
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            assert await manager.get_valid_token() == "tid=first"
            assert await manager.get_valid_token() == "tid=second"
        assert len(rec.requests) == 2

    async def test_invalidate_forces_exchange(self, store: CredentialStore, recorder) -> None:
        rec = recorder({TOKEN_PATH: [_token_body("tid=first"), _token_body("tid=second")]})
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            await manager.get_valid_token()
            manager.invalidate()
            assert manager.cached_token is None
            assert await manager.get_valid_token() == "tid=second"

    async def test_exchange_failure_propagates(self, store: CredentialStore, recorder) -> None:
        rec = recorder({TOKEN_PATH: [httpx.Response(403, text="not entitled")]})
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            with pytest.raises(TokenExchangeError) as exc_info:
                await manager.get_valid_token()
        assert exc_info.value.status_code == 403
        assert "not entitled" in str(exc_info.value)
        assert manager.cached_token is None

    async def test_concurrent_callers_share_one_exchange(self, store: CredentialStore) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=_token_body(f"tid={calls}"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_x"), store=store, http_client=client
            )
            tokens = await asyncio.gather(*(manager.get_valid_token() for _ in range(5)))

        assert calls == 1
        assert set(tokens) == {"tid=1"}


# -------------------------------------------------------------------------
# Device flow
# -------------------------------------------------------------------------


class TestDeviceFlow:
    async def test_successful_login(
        self, store: CredentialStore, recorder, fake_sleep
    ) -> None:
        rec = recorder(
            {
                CODE_PATH: [DEVICE_CODE],
                ACCESS_PATH: [
                    {"error": "authorization_pending"},
                    {"error": "authorization_pending"},
                    {"access_token": "gho_new", "token_type": "bearer"},
                ],
                TOKEN_PATH: [_token_body("tid=after-login")],
            }
        )
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            assert not manager.has_oauth_token()

            handle = await manager.initiate_device_flow()
            assert handle.verification_uri == "https://github.com/login/device"
            assert handle.user_code == "ABCD-1234"
            assert rec.calls_to(ACCESS_PATH) == []

            assert await handle.poll_for_token() is True
            assert handle.session.status is DeviceFlowStatus.AUTHORIZED
            assert manager.has_oauth_token()
            assert manager.credential_source is CredentialSource.LOCAL

            assert await manager.get_valid_token() == "tid=after-login"

        assert len(rec.calls_to(ACCESS_PATH)) == 3
        (exchange,) = rec.calls_to(TOKEN_PATH)
        assert exchange.headers["Authorization"] == "Bearer gho_new"
        saved = json.loads(store.local_path.read_text(encoding="utf-8"))
        assert saved["oauth_token"] == "gho_new"

    async def test_login_discards_cached_api_token(
        self, store: CredentialStore, recorder, fake_sleep
    ) -> None:
        rec = recorder(
            {
                CODE_PATH: [DEVICE_CODE],
                ACCESS_PATH: [{"access_token": "gho_new"}],
                TOKEN_PATH: [_token_body("tid=old"), _token_body("tid=new")],
            }
        )
        async with rec.client() as client:
            manager = AuthManager(
                AuthConfig(oauth_token="gho_old"),
                store=store,
                http_client=client,
                sleep=fake_sleep,
            )
            assert await manager.get_valid_token() == "tid=old"
            handle = await manager.initiate_device_flow()
            assert await handle.poll_for_token() is True
            assert manager.cached_token is None
            assert await manager.get_valid_token() == "tid=new"

    async def test_denied_login(self, store: CredentialStore, recorder, fake_sleep) -> None:
        rec = recorder(
            {
                CODE_PATH: [DEVICE_CODE],
                ACCESS_PATH: [{"error": "access_denied"}],
            }
        )
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            handle = await manager.initiate_device_flow()
            assert await handle.poll_for_token() is False

        assert handle.session.status is DeviceFlowStatus.DENIED
        assert handle.session.error == "access_denied"
        assert not manager.has_oauth_token()
        assert not store.local_path.exists()

    async def test_repeat_poll_keeps_authorized_result(
        self, store: CredentialStore, recorder, fake_sleep
    ) -> None:
        rec = recorder(
            {
                CODE_PATH: [DEVICE_CODE],
                ACCESS_PATH: [
                    {"access_token": "gho_new"},
                    {"error": "bad_verification_code"},
                ],
            }
        )
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            handle = await manager.initiate_device_flow()
            assert await handle.poll_for_token() is True
            assert await handle.poll_for_token() is True

        assert handle.session.status is DeviceFlowStatus.AUTHORIZED
        assert handle.session.error is None
        assert len(rec.calls_to(ACCESS_PATH)) == 1
        assert manager.has_oauth_token()

    async def test_repeat_poll_keeps_denied_result(
        self, store: CredentialStore, recorder, fake_sleep
    ) -> None:
        rec = recorder(
            {
                CODE_PATH: [DEVICE_CODE],
                ACCESS_PATH: [{"error": "access_denied"}, {"access_token": "gho_late"}],
            }
        )
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            handle = await manager.initiate_device_flow()
            assert await handle.poll_for_token() is False
            assert await handle.poll_for_token() is False

        assert handle.session.status is DeviceFlowStatus.DENIED
        assert len(rec.calls_to(ACCESS_PATH)) == 1
        assert not manager.has_oauth_token()

    async def test_initiation_failure_raises(
        self, store: CredentialStore, recorder, fake_sleep
    ) -> None:
        rec = recorder({CODE_PATH: [httpx.Response(400, text="bad request")]})
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            with pytest.raises(DeviceFlowError):
                await manager.initiate_device_flow()
        assert rec.calls_to(ACCESS_PATH) == []

    async def test_cancelled_login(self, store: CredentialStore, recorder, fake_sleep) -> None:
        rec = recorder({CODE_PATH: [DEVICE_CODE], ACCESS_PATH: [{"access_token": "gho_new"}]})
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            handle = await manager.initiate_device_flow()
            handle.cancel()
            assert await handle.poll_for_token() is False

        assert handle.session.error == "cancelled"
        assert rec.calls_to(ACCESS_PATH) == []
        assert not manager.has_oauth_token()

    async def test_unwritable_token_file_still_authorizes(
        self, tmp_path: Path, recorder, fake_sleep
    ) -> None:
        store = CredentialStore(
            apps_path=tmp_path / "apps.json",
            hosts_path=tmp_path / "hosts.json",
            local_path=tmp_path / "missing-dir" / ".copilot-auth.json",
        )
        rec = recorder({CODE_PATH: [DEVICE_CODE], ACCESS_PATH: [{"access_token": "gho_new"}]})
        async with rec.client() as client:
            manager = AuthManager(store=store, http_client=client, sleep=fake_sleep)
            handle = await manager.initiate_device_flow()
            assert await handle.poll_for_token() is True

        assert manager.has_oauth_token()
        assert not store.local_path.exists()


class TestDebugLogging:
    def test_debug_config_enables_logging(self, store: CredentialStore) -> None:
        AuthManager(AuthConfig(debug=True), store=store)
        logger = logging.getLogger("copilot_auth")
        assert logger.level == logging.DEBUG
        assert logger.handlers

    def test_debug_config_keeps_propagation(
        self, store: CredentialStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG):
            AuthManager(AuthConfig(debug=True, oauth_token="gho_x"), store=store)
        assert logging.getLogger("copilot_auth").propagate is True
        assert "Using provided OAuth token" in caplog.text
