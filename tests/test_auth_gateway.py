"""Tests for registration, login and bearer tokens."""

import datetime

import jwt
import pytest

from tagnotes.exceptions import (
    AuthenticationError,
    ErrorCode,
    UserExistsError,
    ValidationError,
)
from tagnotes.services.auth_gateway import AuthGateway, hash_password, verify_password

REGISTRATION = {"username": "bob", "email": "bob@example.com", "password": "hunter2"}


class TestPasswords:
    """Tests for bcrypt helpers."""

    def test_hash_and_verify(self):
        hashed = hash_password("hunter2")
        assert hashed != "hunter2"
        assert verify_password("hunter2", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("hunter2", "not-a-bcrypt-hash")


class TestRegisterLogin:
    """Tests for account flows."""

    def test_register_returns_token_for_new_user(self, auth):
        result = auth.register(REGISTRATION)

        assert result.user.username == "bob"
        assert auth.verify(result.token) == result.user.id
        assert result.to_dict()["user"] == {
            "id": result.user.id, "username": "bob", "email": "bob@example.com",
        }

    def test_duplicate_registration(self, auth):
        auth.register(REGISTRATION)
        with pytest.raises(UserExistsError) as exc_info:
            auth.register({**REGISTRATION, "username": "bob2"})
        assert exc_info.value.code == ErrorCode.USER_ALREADY_EXISTS
        assert exc_info.value.http_status == 400

    @pytest.mark.parametrize(
        "override",
        [{"email": "no-at-sign"}, {"username": ""}, {"password": "x" * 73}],
    )
    def test_invalid_registration(self, auth, override):
        with pytest.raises(ValidationError):
            auth.register({**REGISTRATION, **override})

    @pytest.mark.parametrize("login", ["bob", "bob@example.com"])
    def test_login_by_username_or_email(self, auth, login):
        registered = auth.register(REGISTRATION)
        result = auth.login({"login": login, "password": "hunter2"})
        assert result.user.id == registered.user.id

    @pytest.mark.parametrize(
        "login,password", [("bob", "wrong"), ("nobody", "hunter2")]
    )
    def test_bad_credentials(self, auth, login, password):
        auth.register(REGISTRATION)
        with pytest.raises(AuthenticationError) as exc_info:
            auth.login({"login": login, "password": password})
        assert exc_info.value.code == ErrorCode.AUTH_INVALID_CREDENTIALS
        assert exc_info.value.http_status == 401


class TestTokens:
    """Tests for token verification."""

    def test_missing_token_is_401(self, auth):
        with pytest.raises(AuthenticationError) as exc_info:
            auth.verify(None)
        assert exc_info.value.http_status == 401

    def test_garbage_token_is_403(self, auth):
        with pytest.raises(AuthenticationError) as exc_info:
            auth.verify("not.a.token")
        assert exc_info.value.http_status == 403

    def test_expired_token(self, auth):
        now = datetime.datetime.now(datetime.timezone.utc)
        token = jwt.encode(
            {"sub": "1", "exp": now - datetime.timedelta(seconds=5)},
            auth.secret, algorithm="HS256",
        )
        with pytest.raises(AuthenticationError) as exc_info:
            auth.verify(token)
        assert exc_info.value.code == ErrorCode.AUTH_INVALID_TOKEN

    def test_token_signed_with_other_secret(self, auth, user_repository):
        other = AuthGateway(user_repository, secret="another-secret-of-sufficient-length")
        token = other.register(REGISTRATION).token
        with pytest.raises(AuthenticationError):
            auth.verify(token)
