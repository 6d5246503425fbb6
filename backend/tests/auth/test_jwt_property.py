"""Property-based tests for bearer token handling.

**Feature: video-transcoder, Property 9: Token Round Trip**
**Feature: video-transcoder, Property 10: Owner Or Admin Access**
"""

import asyncio
import string
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from hypothesis import given, settings, strategies as st
from jose import jwt

from transcoder.core.config import settings as app_settings
from transcoder.modules.auth.jwt import (
    create_access_token,
    decode_token,
    get_current_principal,
    require_admin,
)
from transcoder.modules.auth.permissions import AccessPolicy, OwnerOrAdminPolicy, Principal

user_ids = st.text(
    alphabet=string.ascii_letters + string.digits + "-_",
    min_size=1,
    max_size=40,
)


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestTokenRoundTrip:
    """Property tests for create_access_token / decode_token."""

    @given(user_id=user_ids, role=st.sampled_from(["user", "admin"]))
    @settings(max_examples=100)
    def test_token_round_trip(self, user_id: str, role: str) -> None:
        """**Feature: video-transcoder, Property 9: Token Round Trip**

        For any user id and role, a freshly created token SHALL decode to the
        same subject and role.
        """
        payload = decode_token(create_access_token(user_id, role=role))

        assert payload is not None
        assert payload.sub == user_id
        assert payload.role == role
        assert payload.type == "access"
        assert payload.exp > datetime.now(timezone.utc)

    def test_each_token_has_unique_id(self) -> None:
        first = decode_token(create_access_token("alice"))
        second = decode_token(create_access_token("alice"))
        assert first.jti != second.jti

    def test_expired_token_is_rejected(self) -> None:
        token = create_access_token("alice", expires_delta=timedelta(seconds=-1))
        assert decode_token(token) is None

    def test_wrong_signature_is_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "alice", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "some-other-key",
            algorithm=app_settings.JWT_ALGORITHM,
        )
        assert decode_token(token) is None

    def test_refresh_token_is_rejected(self) -> None:
        token = jwt.encode(
            {
                "sub": "alice",
                "type": "refresh",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            app_settings.SECRET_KEY,
            algorithm=app_settings.JWT_ALGORITHM,
        )
        assert decode_token(token) is None

    def test_token_without_subject_is_rejected(self) -> None:
        token = jwt.encode(
            {"exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            app_settings.SECRET_KEY,
            algorithm=app_settings.JWT_ALGORITHM,
        )
        assert decode_token(token) is None

    def test_garbage_is_rejected(self) -> None:
        assert decode_token("not.a.token") is None


class TestDependencies:
    """Tests for the FastAPI auth dependencies."""

    def test_current_principal(self) -> None:
        token = create_access_token("alice", role="admin")

        principal = asyncio.run(get_current_principal(bearer(token)))

        assert principal == Principal(user_id="alice", role="admin")
        assert principal.is_admin

    def test_invalid_token_is_unauthorized(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(get_current_principal(bearer("nonsense")))

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_require_admin(self) -> None:
        admin = Principal(user_id="root", role="admin")
        assert asyncio.run(require_admin(admin)) is admin

        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(require_admin(Principal(user_id="alice")))
        assert exc_info.value.status_code == 403


class TestOwnerOrAdminPolicy:
    """Property tests for the access policy."""

    @given(requester=user_ids, owner=user_ids)
    @settings(max_examples=100)
    def test_access_rule(self, requester: str, owner: str) -> None:
        """**Feature: video-transcoder, Property 10: Owner Or Admin Access**

        For any requester and owner, access SHALL be granted exactly when the
        requester owns the resource or is an admin.
        """
        policy = OwnerOrAdminPolicy()

        assert policy.can_access(Principal(user_id=requester), owner) == (requester == owner)
        assert policy.can_access(Principal(user_id=requester, role="admin"), owner)

    def test_policy_must_implement_can_access(self) -> None:
        with pytest.raises(TypeError):
            AccessPolicy()
