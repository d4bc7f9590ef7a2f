"""
Consent evidence recording.

Append-only audit trail of subscription-terms acceptance. Read by compliance
tooling only. Recording is best-effort: a failed write is logged and never
blocks the checkout that triggered it.
"""
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from koma_api.core.clock import Clock, utc_now
from koma_api.core.database import get_db_session, consents
from koma_api.core.logging import log_event
from koma_api.models.consent import CHECKOUT_CONSENT_KIND, USER_AGENT_MAX_LENGTH, ConsentRecord


class ConsentRecorder:
    def __init__(self, session_factory: sessionmaker, clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def record(
        self,
        user_id: str,
        version: str,
        *,
        kind: str = CHECKOUT_CONSENT_KIND,
        client_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[ConsentRecord]:
        """Persist one consent record. Returns None when the write failed."""
        record = ConsentRecord(
            user_id=user_id,
            kind=kind,
            version=version,
            accepted_at=self.clock(),
            client_address=client_address,
            user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
        )
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(insert(consents).values(**record.model_dump()))
        except SQLAlchemyError as exc:
            log_event(
                "warning",
                "consent.record_failed",
                user_id=user_id,
                error_code="CONSENT_RECORD_FAILED",
                extra={"kind": kind, "error": exc},
            )
            return None
        return record
