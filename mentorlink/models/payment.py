# mentorlink/models/payment.py
from sqlalchemy import Column, Integer, String, TIMESTAMP, func
from mentorlink.database import Base
import enum


class PaymentState(str, enum.Enum):
    CREATED = "created"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String(64), nullable=False, index=True)
    alumni_id = Column(String(64), nullable=False, index=True)
    request_id = Column(String(32), nullable=False, index=True)
    payment_id = Column(String(100), unique=True, nullable=False)
    order_id = Column(String(100), nullable=False)
    signature = Column(String(200))
    amount = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=PaymentState.CREATED.value)
    created_at = Column(TIMESTAMP, server_default=func.now())
