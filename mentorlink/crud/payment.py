# mentorlink/crud/payment.py
from sqlalchemy.orm import Session
from typing import Optional

from mentorlink import models
from mentorlink.models.payment import PaymentState


def get_completed_payment(
    db: Session,
    *,
    student_id: str,
    alumni_id: str,
    request_id: str,
) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(
        models.Payment.student_id == student_id,
        models.Payment.alumni_id == alumni_id,
        models.Payment.request_id == request_id,
        models.Payment.status == PaymentState.COMPLETED.value,
    ).first()


def get_by_payment_id(db: Session, payment_id: str) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.payment_id == payment_id).first()


def record_completed_payment(
    db: Session,
    *,
    student_id: str,
    alumni_id: str,
    request_id: str,
    payment_id: str,
    order_id: str,
    signature: str,
    amount: int,
    currency: str,
) -> models.Payment:
    """Store a verified payment; replays of the same payment_id return the stored row."""
    existing = get_by_payment_id(db, payment_id)
    if existing:
        return existing
    payment = models.Payment(
        student_id=student_id,
        alumni_id=alumni_id,
        request_id=request_id,
        payment_id=payment_id,
        order_id=order_id,
        signature=signature,
        amount=amount,
        currency=currency,
        status=PaymentState.COMPLETED.value,
    )
    db.add(payment)
    db.flush()
    return payment
