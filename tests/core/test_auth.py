"""
Tests for admin token resolution.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from jose import jwt

from alumni.core.auth import DEV_TOKEN, resolve_admin_from_token
from alumni.core.config import settings
from alumni.core.security import create_access_token, decode_token


def test_resolves_admin_claims():
    token = create_access_token(
        "admin-1", {"email": "admin@example.com", "role": "alumni_admin", "name": "Ops"}
    )

    admin = resolve_admin_from_token(token)

    assert admin.id == "admin-1"
    assert admin.actor == "admin@example.com"
    assert admin.role == "alumni_admin"


def test_actor_falls_back_to_id():
    admin = resolve_admin_from_token(create_access_token("admin-9", {"role": "super_admin"}))
    assert admin.actor == "admin-9"


def test_expired_token_rejected():
    token = create_access_token("admin-1", expires_delta=timedelta(seconds=-1))

    assert decode_token(token) is None
    with pytest.raises(HTTPException) as exc_info:
        resolve_admin_from_token(token)

    assert exc_info.value.status_code == 401


def test_wrong_token_type_rejected():
    token = jwt.encode(
        {"sub": "admin-1", "role": "alumni_admin", "type": "refresh"},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )

    with pytest.raises(HTTPException) as exc_info:
        resolve_admin_from_token(token)

    assert exc_info.value.detail["error"] == "INVALID_TOKEN_TYPE"


def test_dev_token_refused_outside_development():
    with patch("alumni.core.auth._is_dev_mode_safe", return_value=False):
        with pytest.raises(HTTPException) as exc_info:
            resolve_admin_from_token(DEV_TOKEN)

    assert exc_info.value.status_code == 401


def test_dev_token_in_development():
    with patch("alumni.core.auth._is_dev_mode_safe", return_value=True):
        admin = resolve_admin_from_token(DEV_TOKEN)

    assert admin.role == "super_admin"
