from typing import Any, Dict

from checkout.domain.models import OrderStatus
from checkout.gateways.port import PaymentGateway, VerificationResult
from shared.core import get_logger

logger = get_logger(__name__)


class PaymentVerifier:
    """Turns a provider verification result into an order status.

    This is the only place that decides paid / failed / pending, so every
    provider and every entry point (redirect, webhook, polling) agree.
    """

    def verify(self, gateway: PaymentGateway, payload: Dict[str, Any]) -> VerificationResult:
        result = gateway.verify_payment_response(payload)
        logger.info(
            "Payment verification completed",
            extra={'extra_fields': {
                'gateway': gateway.name,
                'success': result.success,
                'pending': result.pending,
                'raw_status': result.raw_status,
            }}
        )
        return result

    @staticmethod
    def determine_status(result: VerificationResult) -> OrderStatus:
        if result.success:
            return OrderStatus.PAID
        if result.pending:
            return OrderStatus.PENDING
        return OrderStatus.FAILED
