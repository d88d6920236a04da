"""Password hashing and bearer tokens for the tagnotes API."""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import bcrypt
import jwt

from tagnotes.config import config
from tagnotes.exceptions import AuthenticationError, ErrorCode
from tagnotes.models.schema import LoginInput, RegisterInput, User, utc_now
from tagnotes.storage.user_repository import UserRepository
from tagnotes.utils import parse_payload

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bool(
            bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        )
    except ValueError:
        # Malformed stored hash, or a password over bcrypt's input limit
        return False


@dataclass
class AuthResult:
    """A freshly issued token and the user it belongs to."""

    token: str
    user: User

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "user": {
                "id": self.user.id,
                "username": self.user.username,
                "email": self.user.email,
            },
        }


class AuthGateway:
    """Registers users, checks credentials and issues/verifies JWTs.

    Tokens carry the user id as `sub` plus the username, and expire after
    token_ttl_days.
    """

    def __init__(
        self,
        users: UserRepository,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        ttl_days: Optional[int] = None,
    ):
        self.users = users
        self.secret = secret or config.jwt_secret
        self.algorithm = algorithm or config.jwt_algorithm
        self.ttl = datetime.timedelta(days=ttl_days or config.token_ttl_days)

    def issue_token(self, user: User) -> str:
        now = utc_now()
        claims = {
            "sub": str(user.id),
            "username": user.username,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def register(self, payload: Union[Dict[str, Any], RegisterInput]) -> AuthResult:
        """Create an account and sign the new user in.

        Raises:
            ValidationError: On a malformed payload.
            UserExistsError: If the username or email is taken.
        """
        data = parse_payload(RegisterInput, payload)
        user = self.users.create_user(
            data.username, data.email, hash_password(data.password)
        )
        return AuthResult(token=self.issue_token(user), user=user)

    def login(self, payload: Union[Dict[str, Any], LoginInput]) -> AuthResult:
        """Sign in by username or email.

        Raises:
            AuthenticationError: If the user is unknown or the password is
                wrong. Both cases look the same to the caller.
        """
        data = parse_payload(LoginInput, payload)
        found = self.users.get_by_login(data.login)
        if found is None or not verify_password(data.password, found[1]):
            logger.info(f"Failed login for {data.login!r}")
            raise AuthenticationError(
                "Invalid credentials", code=ErrorCode.AUTH_INVALID_CREDENTIALS
            )
        user = found[0]
        return AuthResult(token=self.issue_token(user), user=user)

    def verify(self, token: Optional[str]) -> int:
        """Resolve a bearer token to a user id.

        Raises:
            AuthenticationError: AUTH_MISSING_TOKEN (401) when no token was
                sent, AUTH_INVALID_TOKEN (403) when it is malformed, expired
                or signed with another key.
        """
        if not token:
            raise AuthenticationError(
                "Missing bearer token", code=ErrorCode.AUTH_MISSING_TOKEN
            )
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
            return int(claims["sub"])
        except (jwt.InvalidTokenError, KeyError, ValueError) as e:
            raise AuthenticationError(
                f"Invalid token: {e.__class__.__name__}",
                code=ErrorCode.AUTH_INVALID_TOKEN,
            ) from e
