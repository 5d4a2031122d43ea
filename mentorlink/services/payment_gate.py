# mentorlink/services/payment_gate.py
import logging

from mentorlink.services.clients import PaymentClient
from mentorlink.services.errors import RemoteServiceError

logger = logging.getLogger(__name__)


class PaymentGate:
    """Answers whether the payer has paid for a request. Fails closed."""

    def __init__(self, client: PaymentClient):
        self._client = client

    async def has_paid(self, request_id: str, payer: str, payee: str) -> bool:
        try:
            return await self._client.has_paid(payer, payee, request_id)
        except RemoteServiceError as exc:
            logger.warning(
                "Payment status check failed, treating as unpaid (request_id=%s): %s",
                request_id,
                exc,
            )
            return False
