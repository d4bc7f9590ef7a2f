"""
Billing webhook processing.

Processing protocol, in order:
1. Verify the signature over the raw body (provider). Nothing is parsed or
   written before this succeeds.
2. Insert the processed-event record. The unique constraint on event_id is the
   idempotency boundary: when two deliveries of the same event race, exactly one
   insert succeeds; the other sees IntegrityError and returns as a duplicate.
3. Apply the plan transition for the event type.

Steps 2 and 3 run in one transaction, so a failure while applying the effect
rolls back the processed-event record and the processor's redelivery retries it.
Missing preconditions (unknown user, unknown price) are logged no-ops; the
event still counts as processed.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from koma_api.core.clock import Clock, utc_now
from koma_api.core.database import get_db_session, processed_events, users
from koma_api.core.logging import log_event
from koma_api.features.billing.provider import BillingProvider
from koma_api.models.plan import PAID_PLANS

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

DOWNGRADE_STATUSES = ("canceled", "unpaid", "past_due")


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    duplicate: bool = False
    applied: bool = False


def _id_of(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


def _source_created_at(event: Dict[str, Any]) -> Optional[datetime]:
    created = event.get("created")
    if isinstance(created, (int, float)):
        return datetime.fromtimestamp(created, timezone.utc)
    return None


class WebhookProcessor:
    def __init__(
        self,
        provider: BillingProvider,
        session_factory: sessionmaker,
        price_to_plan: Dict[str, str],
        clock: Clock = utc_now,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.price_to_plan = {price: plan for price, plan in price_to_plan.items() if price}
        self.clock = clock

    @classmethod
    def plan_map_from_price_ids(cls, price_ids: Dict[str, Optional[str]]) -> Dict[str, str]:
        return {price_id: plan for plan, price_id in price_ids.items() if price_id}

    def process(self, body: bytes, signature_header: Optional[str]) -> WebhookResult:
        """
        Verify, deduplicate and apply one webhook delivery.

        Raises:
            WebhookSignatureError: signature missing, invalid or stale
        """
        event = self.provider.verify_webhook(body, signature_header)
        event_id = str(event["id"])
        event_type = str(event["type"])

        with get_db_session(self.session_factory) as session:
            try:
                session.execute(
                    insert(processed_events).values(
                        event_id=event_id,
                        event_type=event_type,
                        source_created_at=_source_created_at(event),
                        received_at=self.clock(),
                    )
                )
            except IntegrityError:
                session.rollback()
                log_event("info", "webhook.duplicate", event_type=event_type, extra={"event_id": event_id})
                return WebhookResult(event_id=event_id, event_type=event_type, duplicate=True)

            applied = self._apply(session, event_type, event)

        log_event(
            "info",
            "webhook.processed",
            event_type=event_type,
            extra={"event_id": event_id, "applied": applied},
        )
        return WebhookResult(event_id=event_id, event_type=event_type, applied=applied)

    def _apply(self, session: Session, event_type: str, event: Dict[str, Any]) -> bool:
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == CHECKOUT_COMPLETED:
            return self._on_checkout_completed(session, obj)
        if event_type == SUBSCRIPTION_UPDATED:
            return self._on_subscription_updated(session, obj)
        if event_type == SUBSCRIPTION_DELETED:
            return self._on_subscription_deleted(session, obj)

        log_event("info", "webhook.unhandled", event_type=event_type)
        return False

    def _on_checkout_completed(self, session: Session, obj: Dict[str, Any]) -> bool:
        metadata = obj.get("metadata") or {}
        user_id = metadata.get("user_id")
        plan = metadata.get("plan")
        subscription_id = _id_of(obj.get("subscription")) or metadata.get("subscription_id")

        if not user_id or plan not in PAID_PLANS or not subscription_id:
            log_event(
                "warning",
                "webhook.checkout_missing_metadata",
                event_type=CHECKOUT_COMPLETED,
                extra={"has_user": bool(user_id), "plan": plan, "has_subscription": bool(subscription_id)},
            )
            return False

        user_id = user_id.strip().lower()
        result = session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(plan=plan, billing_subscription_id=subscription_id, updated_at=self.clock())
        )
        if result.rowcount == 0:
            log_event("warning", "webhook.user_not_found", user_id=user_id, event_type=CHECKOUT_COMPLETED)
            return False

        log_event("info", "webhook.plan_activated", user_id=user_id, extra={"plan": plan})
        return True

    def _user_id_for_customer(self, session: Session, customer_id: Optional[str]) -> Optional[str]:
        if not customer_id:
            return None
        row = session.execute(
            select(users.c.id).where(users.c.billing_customer_id == customer_id)
        ).first()
        return row.id if row else None

    def _plan_for_subscription(self, obj: Dict[str, Any]) -> Optional[str]:
        items = (obj.get("items") or {}).get("data") or []
        if not items:
            return None
        price_id = _id_of((items[0] or {}).get("price"))
        return self.price_to_plan.get(price_id) if price_id else None

    def _reset_to_free(self, session: Session, user_id: str, event_type: str) -> bool:
        session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(plan="free", billing_subscription_id=None, updated_at=self.clock())
        )
        log_event("info", "webhook.plan_reset", user_id=user_id, event_type=event_type)
        return True

    def _on_subscription_updated(self, session: Session, obj: Dict[str, Any]) -> bool:
        user_id = self._user_id_for_customer(session, _id_of(obj.get("customer")))
        if not user_id:
            log_event("warning", "webhook.user_not_found", event_type=SUBSCRIPTION_UPDATED)
            return False

        status = obj.get("status")
        if status == "active":
            plan = self._plan_for_subscription(obj)
            if not plan:
                log_event("warning", "webhook.unknown_price", user_id=user_id, event_type=SUBSCRIPTION_UPDATED)
                return False
            session.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(plan=plan, updated_at=self.clock())
            )
            log_event("info", "webhook.plan_changed", user_id=user_id, extra={"plan": plan})
            return True

        if status in DOWNGRADE_STATUSES:
            return self._reset_to_free(session, user_id, SUBSCRIPTION_UPDATED)

        log_event("info", "webhook.status_ignored", user_id=user_id, extra={"status": status})
        return False

    def _on_subscription_deleted(self, session: Session, obj: Dict[str, Any]) -> bool:
        user_id = self._user_id_for_customer(session, _id_of(obj.get("customer")))
        if not user_id:
            log_event("warning", "webhook.user_not_found", event_type=SUBSCRIPTION_DELETED)
            return False
        return self._reset_to_free(session, user_id, SUBSCRIPTION_DELETED)
