# mentorlink/api/payment.py
"""
Mentorship Payment API

Records gateway-verified payments and answers "has the student paid for
this request". The checkout flow itself lives with the gateway.
"""

import hashlib
import hmac
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, HTTPException
from sqlalchemy.orm import Session

from mentorlink.config import settings
from mentorlink.crud import payment as payment_crud
from mentorlink.database import get_db
from mentorlink.schemas.payment import PaymentStatusOut, PaymentVerifyOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment/mentorship", tags=["payment"])


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    body = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    return hmac.compare_digest(expected_signature(order_id, payment_id, secret), signature)


@router.get("/status/{student_id}/{alumni_id}/{request_id}", response_model=PaymentStatusOut)
def get_payment_status(
    student_id: str,
    alumni_id: str,
    request_id: str,
    db: Session = Depends(get_db),
):
    payment = payment_crud.get_completed_payment(
        db,
        student_id=student_id,
        alumni_id=alumni_id,
        request_id=request_id,
    )
    if payment:
        return PaymentStatusOut(
            has_paid=True,
            amount=payment.amount,
            currency=payment.currency,
            payment_id=payment.payment_id,
            order_id=payment.order_id,
            created_at=payment.created_at,
        )
    return PaymentStatusOut(
        has_paid=False,
        amount=settings.MENTORSHIP_FEE_AMOUNT,
        currency=settings.MENTORSHIP_FEE_CURRENCY,
    )


@router.post("/verify", response_model=PaymentVerifyOut)
def verify_payment(
    order_id: str = Form(...),
    payment_id: str = Form(...),
    signature: str = Form(...),
    student_id: str = Form(...),
    alumni_id: str = Form(...),
    request_id: str = Form(...),
    amount: Optional[int] = Form(None),
    db: Session = Depends(get_db),
):
    """Verify the gateway's signed confirmation and store the payment."""
    if not settings.PAYMENT_KEY_SECRET:
        raise HTTPException(status_code=503, detail="Payment gateway is not configured")

    if not verify_signature(order_id, payment_id, signature, settings.PAYMENT_KEY_SECRET):
        logger.warning("Payment signature mismatch (order_id=%s, request_id=%s)", order_id, request_id)
        raise HTTPException(status_code=400, detail="Payment verification failed")

    payment_crud.record_completed_payment(
        db,
        student_id=student_id,
        alumni_id=alumni_id,
        request_id=request_id,
        payment_id=payment_id,
        order_id=order_id,
        signature=signature,
        amount=amount if amount is not None else settings.MENTORSHIP_FEE_AMOUNT,
        currency=settings.MENTORSHIP_FEE_CURRENCY,
    )
    db.commit()
    logger.info("Payment verified (payment_id=%s, request_id=%s)", payment_id, request_id)
    return PaymentVerifyOut(
        success=True,
        message="Payment verified and stored successfully",
        payment_id=payment_id,
        order_id=order_id,
        request_id=request_id,
    )
