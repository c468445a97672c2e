"""Tests for the OAuth provider glue.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken

from mcp_powertool.security.auth.callback_server import CallbackSessionRegistry, OAuthSession
from mcp_powertool.security.auth.provider import (
    CredentialTokenStorage,
    SessionCallbackHandler,
    SessionRedirectHandler,
    build_client_metadata,
)
from mcp_powertool.security.credentials import CredentialStore


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> CredentialTokenStorage:
    return CredentialTokenStorage(CredentialStore(tmp_path / "creds.json"), tmp_path, "api")


# ============================================================================
# Tests
# ============================================================================


class TestTokenStorage:
    """Tests for the credential-store-backed TokenStorage."""

    @pytest.mark.asyncio
    async def test_empty_storage(self, storage):
        # Act & Assert
        assert await storage.get_tokens() is None
        assert await storage.get_client_info() is None

    @pytest.mark.asyncio
    async def test_tokens_round_trip(self, storage):
        # Arrange
        tokens = OAuthToken(access_token="at", token_type="Bearer", refresh_token="rt")

        # Act
        await storage.set_tokens(tokens)
        loaded = await storage.get_tokens()

        # Assert
        assert loaded is not None
        assert loaded.access_token == "at"
        assert loaded.refresh_token == "rt"

    @pytest.mark.asyncio
    async def test_client_info_round_trip(self, storage):
        # Arrange
        info = OAuthClientInformationFull(
            client_id="c1", redirect_uris=["http://localhost:1234/oauth/callback"]
        )

        # Act
        await storage.set_client_info(info)
        loaded = await storage.get_client_info()

        # Assert
        assert loaded is not None
        assert loaded.client_id == "c1"


class TestRedirectHandler:
    """Tests for binding the OAuth state to our callback session."""

    def test_bind_state_replaces_state(self):
        # Arrange
        session = OAuthSession(session_id="sid", state="csrf", created_at=0)
        handler = SessionRedirectHandler(session, "api", "http://localhost:1/oauth/callback", open_browser=False)

        # Act
        url = handler.bind_state("https://auth.example.com/authorize?client_id=c&state=provider-state")

        # Assert
        query = parse_qs(urlsplit(url).query)
        assert query["state"] == ["sid:csrf"]
        assert query["client_id"] == ["c"]
        assert handler.provider_state == "provider-state"

    @pytest.mark.asyncio
    async def test_callback_handler_returns_provider_state(self):
        # Arrange
        registry = CallbackSessionRegistry(auth_timeout=5)
        session = registry.generate_session()
        redirect = SessionRedirectHandler(session, "api", "http://localhost:1/oauth/callback", open_browser=False)
        redirect.bind_state("https://auth.example.com/authorize?state=provider-state")
        registry.handle_callback("the-code", None, session.state_param)
        handler = SessionCallbackHandler(registry, redirect, timeout=1)

        # Act
        code, state = await handler()

        # Assert
        assert code == "the-code"
        assert state == "provider-state"

    @pytest.mark.asyncio
    async def test_reauthorization_uses_fresh_session(self):
        """A second authorization after a completed one gets its own session."""
        # Arrange
        registry = CallbackSessionRegistry(auth_timeout=5)
        first = registry.generate_session()
        redirect = SessionRedirectHandler(
            first, "api", "http://localhost:1/oauth/callback", sessions=registry, open_browser=False
        )
        callback = SessionCallbackHandler(registry, redirect, timeout=1)
        await redirect("https://auth.example.com/authorize?state=s1")
        registry.handle_callback("code-1", None, first.state_param)
        assert await callback() == ("code-1", "s1")

        # Act
        await redirect("https://auth.example.com/authorize?state=s2")
        second = redirect.session
        registry.handle_callback("code-2", None, second.state_param)
        code, state = await callback()

        # Assert
        assert second.session_id != first.session_id
        assert first.session_id not in registry
        assert second.session_id not in registry
        assert (code, state) == ("code-2", "s2")

    @pytest.mark.asyncio
    async def test_swept_session_replaced_before_redirect(self):
        # Arrange
        registry = CallbackSessionRegistry(auth_timeout=5)
        session = registry.generate_session()
        redirect = SessionRedirectHandler(
            session, "api", "http://localhost:1/oauth/callback", sessions=registry, open_browser=False
        )
        registry.sweep(now=session.created_at + 10)

        # Act
        await redirect("https://auth.example.com/authorize?state=s1")

        # Assert
        assert redirect.session.session_id != session.session_id
        assert redirect.session.session_id in registry


class TestClientMetadata:
    def test_metadata_uses_redirect_url(self):
        # Act
        metadata = build_client_metadata("api", "http://localhost:1234/oauth/callback")

        # Assert
        assert [str(u) for u in metadata.redirect_uris] == ["http://localhost:1234/oauth/callback"]
        assert "refresh_token" in metadata.grant_types
