"""Repository for user accounts."""

import logging
from typing import Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from tagnotes.exceptions import StorageError, UserExistsError
from tagnotes.models.db_models import DBUser
from tagnotes.models.schema import User, ensure_timezone_aware, utc_now
from tagnotes.storage.base import Repository

logger = logging.getLogger(__name__)


class UserRepository(Repository):
    """Stores users and their password hashes.

    The hash is treated as an opaque string here; hashing and checking
    belong to the auth gateway.
    """

    @staticmethod
    def _to_model(db_user: DBUser) -> User:
        return User(
            id=db_user.id,
            username=db_user.username,
            email=db_user.email,
            created_at=ensure_timezone_aware(db_user.created_at),
        )

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        """Insert a user.

        Raises:
            UserExistsError: If the username or email is already taken.
        """
        try:
            with self.transaction("create_user") as session:
                taken = session.scalar(
                    select(DBUser.id).where(
                        or_(DBUser.username == username, DBUser.email == email)
                    )
                )
                if taken is not None:
                    raise UserExistsError(username, email)
                db_user = DBUser(
                    username=username,
                    email=email,
                    password_hash=password_hash,
                    created_at=utc_now(),
                )
                session.add(db_user)
                session.flush()
                user = self._to_model(db_user)
        except StorageError as e:
            # Lost a race with a concurrent registration of the same name
            if isinstance(e.original_error, IntegrityError):
                raise UserExistsError(username, email) from e
            raise

        logger.info(f"Registered user {user.id} ({username})")
        return user

    def get_by_login(self, login: str) -> Optional[Tuple[User, str]]:
        """Look a user up by username or email.

        Returns:
            (user, password_hash), or None when no user matches.
        """
        with self.transaction("get_user_by_login", read_only=True) as session:
            db_user = session.scalar(
                select(DBUser).where(
                    or_(DBUser.username == login, DBUser.email == login)
                )
            )
            if db_user is None:
                return None
            return self._to_model(db_user), db_user.password_hash

