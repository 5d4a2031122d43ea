from pydantic import BaseModel
from typing import Optional

from mentorlink.utils.clock import UtcDatetime


class PaymentStatusOut(BaseModel):
    has_paid: bool
    amount: int
    currency: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class PaymentVerifyOut(BaseModel):
    success: bool
    message: str
    payment_id: str
    order_id: str
    request_id: str
