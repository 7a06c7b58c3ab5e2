from datetime import timedelta

import jwt
import pytest

from app.auth import create_access_token, decode_access_token, get_auth_context, resolve_auth_context
from app.core.config import settings
from app.core.exceptions import ForbiddenException, UnauthorizedException


def test_token_round_trip_resolves_context():
    token = create_access_token("user-1", "org-1")

    context = resolve_auth_context(token, "org-1")

    assert context.user_id == "user-1"
    assert context.organization_id == "org-1"
    assert decode_access_token(token)["sub"] == "user-1"


def test_missing_token_is_unauthorized():
    with pytest.raises(UnauthorizedException) as exc_info:
        resolve_auth_context(None, "org-1")
    assert exc_info.value.status_code == 401
    assert exc_info.value.code == "UNAUTHORIZED"


def test_garbage_token_is_unauthorized():
    with pytest.raises(UnauthorizedException):
        resolve_auth_context("not-a-jwt", "org-1")


def test_expired_token_is_unauthorized():
    token = create_access_token("user-1", "org-1", expires_delta=timedelta(seconds=-5))

    with pytest.raises(UnauthorizedException):
        resolve_auth_context(token, "org-1")


def test_token_signed_with_other_key_is_unauthorized():
    token = jwt.encode({"sub": "user-1", "org": "org-1"}, "other-key", algorithm=settings.algorithm)

    with pytest.raises(UnauthorizedException):
        resolve_auth_context(token, "org-1")


def test_token_without_org_claim_is_unauthorized():
    token = jwt.encode(
        {"sub": "user-1"},
        settings.secret_key.get_secret_value(),
        algorithm=settings.algorithm,
    )

    with pytest.raises(UnauthorizedException):
        resolve_auth_context(token, "org-1")


def test_token_for_other_organization_is_forbidden():
    token = create_access_token("user-1", "org-2")

    with pytest.raises(ForbiddenException) as exc_info:
        resolve_auth_context(token, "org-1")
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_header_token_wins_over_query_token():
    header_token = create_access_token("header-user", "org-1")
    query_token = create_access_token("query-user", "org-1")

    context = await get_auth_context("org-1", bearer_token=header_token, token=query_token)
    assert context.user_id == "header-user"

    context = await get_auth_context("org-1", bearer_token=None, token=query_token)
    assert context.user_id == "query-user"
