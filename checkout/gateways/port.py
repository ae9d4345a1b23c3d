"""Payment gateway interface and the value types that cross it."""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx

from checkout.domain.errors import GatewayError
from shared.core import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentContext:
    """Everything a provider needs to open a payment for one order."""

    order_id: int
    user_id: int
    amount: int
    currency: str
    merchant_transaction_id: str
    receipt: str
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentRequest:
    payment_url: Optional[str] = None
    transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    pending: bool = False
    transaction_id: Optional[str] = None
    raw_status: Optional[str] = None
    signature: Optional[str] = None
    instrument: Optional[str] = None

    @classmethod
    def failed(cls, raw_status: Optional[str] = None, transaction_id: Optional[str] = None):
        return cls(success=False, pending=False, raw_status=raw_status, transaction_id=transaction_id)


@dataclass(frozen=True)
class RefundContext:
    """A refund against a settled payment. ``amount`` is in minor units."""

    order_id: int
    user_id: int
    amount: int
    currency: str
    merchant_transaction_id: str
    merchant_refund_id: str
    gateway_transaction_id: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: int
    status: Optional[str] = None


class PaymentGateway(ABC):
    name: str = ""
    required_verification_fields: Tuple[str, ...] = ()

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def create_payment_request(self, context: PaymentContext) -> PaymentRequest:
        """Open a payment with the provider. One network side effect per call."""

    @abstractmethod
    def verify_payment_response(self, payload: Dict[str, Any]) -> VerificationResult:
        """Confirm a client-returned payload. Raises InvalidSignature on a bad checksum."""

    def payload_reference(self, payload: Dict[str, Any]) -> Optional[str]:
        """Order-level id a redirect payload claims to belong to, if it carries one."""
        return None

    @abstractmethod
    def check_status(self, correlation_id: str) -> VerificationResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check the signature over the raw request bytes. Never raises."""

    @abstractmethod
    def initiate_refund(self, context: RefundContext) -> RefundResult:
        """Refund all or part of a captured payment. Provider errors raise GatewayError."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} configured={self.is_configured()}>"


class HttpGateway(PaymentGateway):
    """Shared transport for providers reached over HTTPS.

    A client may be injected (tests pass one built on ``httpx.MockTransport``);
    otherwise a short-lived client is opened per call.
    """

    def __init__(self, timeout: float, client: Optional[httpx.Client] = None):
        self.timeout = timeout
        self._client = client

    def _send(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = self._client.request(method, url, timeout=self.timeout, **kwargs)
                response.raise_for_status()
                return response.json()
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            logger.error(
                f"{self.name} request timed out",
                extra={'extra_fields': {'gateway': self.name, 'method': method, 'url': url}}
            )
            raise GatewayError(f"{self.name} did not respond in time") from exc
        except httpx.HTTPStatusError as exc:
            logger.error(
                f"{self.name} returned an error response",
                extra={'extra_fields': {
                    'gateway': self.name,
                    'url': url,
                    'status_code': exc.response.status_code,
                }}
            )
            raise GatewayError(f"{self.name} rejected the request ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            logger.error(
                f"{self.name} request failed",
                extra={'extra_fields': {'gateway': self.name, 'url': url, 'error': str(exc)}}
            )
            raise GatewayError(f"{self.name} is unreachable") from exc
        except ValueError as exc:
            raise GatewayError(f"{self.name} returned a malformed response") from exc


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hmac_sha256_hex(secret: str, data: bytes) -> str:
    return hmac.new(secret.encode(), data, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.strip().encode())
