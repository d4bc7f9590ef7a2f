from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

CHECKOUT_CONSENT_KIND = "subscription_checkout"
USER_AGENT_MAX_LENGTH = 512


class ConsentRecord(BaseModel):
    """Evidence that a user accepted subscription terms (write-only)."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: str
    version: str
    accepted_at: datetime
    client_address: Optional[str] = None
    user_agent: Optional[str] = None
