"""
Razorpay gateway client over the Orders/Payments REST API.

Every call raises PaymentProviderException on transport errors, timeouts and
non-2xx responses; callers never see a half-successful result.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from django.conf import settings

from apps.core.exceptions import PaymentProviderException, ValidationException
from apps.core.utils import to_minor_units, verify_hmac_signature

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"


class RazorpayGateway:
    """
    Thin client for the handful of Razorpay endpoints the storefront needs.

    `transport` lets tests plug in an httpx.MockTransport.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = '',
        *,
        api_base_url: str = RAZORPAY_API_BASE,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.api_base_url = api_base_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.api_base_url,
            auth=(self.key_id, self.key_secret),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    def _request(self, operation: str, method: str, path: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        if not self.key_id or not self.key_secret:
            raise PaymentProviderException("Razorpay credentials are not configured", operation)

        try:
            with self._client() as client:
                response = client.request(method, path, json=payload)
        except httpx.TimeoutException:
            logger.error(f"Razorpay {operation} timed out after {self.timeout}s")
            raise PaymentProviderException("request timed out", operation)
        except httpx.HTTPError as e:
            logger.error(f"Razorpay {operation} transport error: {e}")
            raise PaymentProviderException(str(e), operation)

        if response.status_code >= 400:
            description = _error_description(response)
            logger.error(f"Razorpay {operation} failed ({response.status_code}): {description}")
            raise PaymentProviderException(description, operation)

        try:
            return response.json()
        except ValueError:
            raise PaymentProviderException("invalid JSON in response", operation)

    # === API ===

    def create_order(self, amount: Decimal, currency: str = 'INR', receipt: str = '',
                     notes: Optional[Dict[str, str]] = None) -> str:
        """
        Open a payment intent for `amount` rupees. Returns the provider order id.
        """
        if Decimal(str(amount)) <= 0:
            raise ValidationException("Amount must be positive", field='amount')

        data = self._request('create_order', 'POST', '/orders', {
            'amount': to_minor_units(amount),
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {},
            'payment_capture': 1,
        })
        provider_order_id = data.get('id')
        if not provider_order_id:
            raise PaymentProviderException("response carried no order id", 'create_order')

        logger.info(f"Opened Razorpay order {provider_order_id} for receipt {receipt}")
        return provider_order_id

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request('fetch_payment', 'GET', f'/payments/{payment_id}')

    def refund(self, payment_id: str, amount: Optional[Decimal] = None,
               notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Full refund when `amount` is None, partial otherwise."""
        payload: Dict[str, Any] = {'speed': 'optimum', 'notes': notes or {}}
        if amount is not None:
            payload['amount'] = to_minor_units(amount)

        data = self._request('refund', 'POST', f'/payments/{payment_id}/refund', payload)
        logger.info(f"Refund {data.get('id')} issued for payment {payment_id}")
        return data

    # === Signatures ===

    def verify_payment_signature(self, provider_order_id: str, payment_id: str, signature: str) -> bool:
        return verify_hmac_signature(self.key_secret, f"{provider_order_id}|{payment_id}", signature)

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        return verify_hmac_signature(self.webhook_secret, body, signature)


def _error_description(response: httpx.Response) -> str:
    try:
        return response.json().get('error', {}).get('description') or f"HTTP {response.status_code}"
    except (ValueError, AttributeError):
        return f"HTTP {response.status_code}"


def get_gateway() -> RazorpayGateway:
    """Gateway built from settings."""
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        api_base_url=settings.RAZORPAY_API_URL,
        timeout=settings.PROVIDER_HTTP_TIMEOUT,
    )
