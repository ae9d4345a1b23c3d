"""Payment gateway registry.

Gateways are looked up by the name stored on each order, so an order is
always verified by the provider that opened it even if the default changes.
"""

from typing import Dict, Iterable, List, Optional

from checkout.core_settings import Settings, get_settings
from checkout.domain.errors import GatewayError, UnsupportedGateway
from checkout.gateways.fake import FakeGateway
from checkout.gateways.phonepe import PhonePeGateway
from checkout.gateways.port import PaymentGateway
from checkout.gateways.razorpay import RazorpayGateway
from shared.core import get_logger

logger = get_logger(__name__)


class PaymentGatewayFactory:
    def __init__(self, gateways: Iterable[PaymentGateway], default: str):
        self._gateways: Dict[str, PaymentGateway] = {gateway.name: gateway for gateway in gateways}
        self.default = default.lower()

    def get_gateway(self, name: Optional[str] = None) -> PaymentGateway:
        key = (name or self.default).lower()
        gateway = self._gateways.get(key)
        if gateway is None:
            raise UnsupportedGateway(
                f"Unsupported payment gateway: {key}",
                errors=[f"Available gateways: {', '.join(sorted(self._gateways))}"],
            )
        if not gateway.is_configured():
            logger.error(
                "Payment gateway not configured",
                extra={'extra_fields': {'gateway': key}}
            )
            raise GatewayError(f"Payment gateway {key} is not configured")
        return gateway

    def get_default_gateway(self) -> PaymentGateway:
        return self.get_gateway(self.default)

    def available_gateways(self) -> List[str]:
        return sorted(name for name, gateway in self._gateways.items() if gateway.is_configured())

    def is_gateway_available(self, name: str) -> bool:
        gateway = self._gateways.get(name.lower())
        return gateway is not None and gateway.is_configured()


def build_gateway_factory(settings: Settings) -> PaymentGatewayFactory:
    gateways: List[PaymentGateway] = [PhonePeGateway(settings), RazorpayGateway(settings)]
    if settings.FAKE_GATEWAY_ENABLED:
        gateways.append(FakeGateway(secret=settings.FAKE_GATEWAY_SECRET))
    return PaymentGatewayFactory(gateways, default=settings.PAYMENT_GATEWAY)


_factory: Optional[PaymentGatewayFactory] = None


def get_gateway_factory() -> PaymentGatewayFactory:
    global _factory
    if _factory is None:
        _factory = build_gateway_factory(get_settings())
    return _factory


def set_gateway_factory(factory: PaymentGatewayFactory) -> None:
    global _factory
    _factory = factory


def reset_gateway_factory() -> None:
    global _factory
    _factory = None


__all__ = [
    "PaymentGatewayFactory",
    "build_gateway_factory",
    "get_gateway_factory",
    "set_gateway_factory",
    "reset_gateway_factory",
]
