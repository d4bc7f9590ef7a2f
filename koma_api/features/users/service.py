"""
User directory.
- get_user(user_id)
- get_or_create_user(email)
- find_by_customer_id(customer_id)
- attach_customer_id(user_id, email, customer_id)

Users are created lazily on the first authenticated request and never deleted.
"""

from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from koma_api.core.clock import Clock, utc_now
from koma_api.core.database import get_db_session, users
from koma_api.models.plan import normalize_plan
from koma_api.models.user import User


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        plan=normalize_plan(row.plan),
        billing_customer_id=row.billing_customer_id,
        billing_subscription_id=row.billing_subscription_id,
        created_at=row.created_at,
    )


class UserDirectory:
    def __init__(self, session_factory: sessionmaker, clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def get_user(self, user_id: str) -> Optional[User]:
        with get_db_session(self.session_factory) as session:
            row = session.execute(select(users).where(users.c.id == user_id)).first()
            return _row_to_user(row) if row else None

    def find_by_customer_id(self, customer_id: str) -> Optional[User]:
        with get_db_session(self.session_factory) as session:
            row = session.execute(
                select(users).where(users.c.billing_customer_id == customer_id)
            ).first()
            return _row_to_user(row) if row else None

    def get_or_create_user(self, email: str) -> User:
        user_id = User.normalized_id(email)
        existing = self.get_user(user_id)
        if existing:
            return existing

        now = self.clock()
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(
                    insert(users).values(
                        id=user_id,
                        email=email.strip(),
                        plan="free",
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            # Concurrent first request created the row
            existing = self.get_user(user_id)
            if existing:
                return existing
            raise

        return User(id=user_id, email=email.strip(), plan="free", created_at=now)

    def attach_customer_id(self, user_id: str, email: str, customer_id: str) -> None:
        """Store the billing customer id, creating the user row if needed."""
        self.get_or_create_user(email)
        with get_db_session(self.session_factory) as session:
            session.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(billing_customer_id=customer_id, updated_at=self.clock())
            )
