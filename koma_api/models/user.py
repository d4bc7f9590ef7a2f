from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    plan: str = "free"
    billing_customer_id: Optional[str] = None
    billing_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @staticmethod
    def normalized_id(email: str) -> str:
        # Identity is derived from the verified email
        return email.strip().lower()
