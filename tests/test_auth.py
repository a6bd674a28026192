import time

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from src.roomchat.security.auth import JwtConfig, User, create_access_token, decode_token, get_current_user
from src.roomchat.security.rbac import Permission, has_permission, permissions_for


def test_token_round_trip_preserves_identity():
    user = User(id="u-1", email="alice@example.com", name="Alice", roles=["member"])
    decoded = decode_token(create_access_token(user))
    assert decoded == user


def test_expired_token_is_rejected():
    cfg = JwtConfig(secret="test-secret")
    now = int(time.time())
    token = jwt.encode({"sub": "u-1", "iat": now - 120, "exp": now - 60}, cfg.secret, algorithm=cfg.algorithm)
    with pytest.raises(HTTPException) as excinfo:
        decode_token(token, cfg)
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Token expired"


def test_token_signed_with_other_secret_is_invalid():
    token = create_access_token(User(id="u-1"), JwtConfig(secret="someone-else"))
    with pytest.raises(HTTPException) as excinfo:
        decode_token(token)
    assert excinfo.value.detail == "Invalid token"


def test_current_user_prefers_header_then_query_token():
    header_token = create_access_token(User(id="from-header"))
    query_token = create_access_token(User(id="from-query"))
    creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=header_token)

    assert get_current_user(creds, query_token).id == "from-header"
    assert get_current_user(None, query_token).id == "from-query"
    with pytest.raises(HTTPException) as excinfo:
        get_current_user(None, None)
    assert excinfo.value.status_code == 401


def test_role_permissions():
    assert permissions_for(["viewer"]) == {Permission.CHAT_READ}
    assert has_permission(User(id="m", roles=["member"]), Permission.CHAT_WRITE)
    assert not has_permission(User(id="v", roles=["viewer"]), Permission.CHAT_WRITE)
    assert has_permission(User(id="a", roles=["admin"]), Permission.CHAT_WRITE)
    assert not has_permission(User(id="x", roles=["unknown"]), Permission.CHAT_READ)
