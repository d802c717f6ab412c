"""
Shiprocket client.

Shiprocket issues a bearer token from /auth/login that stays valid for ten
days. TokenCache holds it for a little less than that and makes concurrent
refreshers wait on one login. Any 401 drops the cached token and the call is
retried once with a fresh one.

Public methods return ProviderResult; ShippingProviderException never leaves
this module.
"""
import logging
import re
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
from django.conf import settings
from django.utils import timezone

from apps.core.exceptions import ShippingProviderException
from apps.core.results import ProviderResult

logger = logging.getLogger(__name__)

SHIPROCKET_API_BASE = "https://apiv2.shiprocket.in/v1/external"
TOKEN_TTL = timedelta(days=9)

ADDRESS_MIN_LENGTH = 3
ADDRESS_MAX_LENGTH = 190
POSTCODE_RE = re.compile(r'^[0-9]{6}$')

# Package defaults when the order carries no dimensions
DEFAULT_DIMENSIONS = {'length': 15, 'breadth': 10, 'height': 5, 'weight': 0.5}


class TokenCache:
    """
    Bearer token with an expiry, refreshed by at most one caller at a time.
    """

    def __init__(self, ttl: timedelta = TOKEN_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _current(self) -> Optional[str]:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def get(self, fetch: Callable[[], str]) -> str:
        token = self._current()
        if token:
            return token
        with self._lock:
            # another thread may have refreshed while we waited
            token = self._current()
            if token:
                return token
            token = fetch()
            self._token = token
            self._expires_at = self._clock() + self.ttl.total_seconds()
            return token

    def invalidate(self, stale: Optional[str] = None) -> None:
        """Drop the token, unless it has already been replaced by a newer one."""
        with self._lock:
            if stale is None or stale == self._token:
                self._token = None
                self._expires_at = 0.0


class ShiprocketClient:

    def __init__(
        self,
        email: str,
        password: str,
        token_cache: TokenCache,
        *,
        api_base_url: str = SHIPROCKET_API_BASE,
        pickup_location: str = 'Primary',
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.email = email
        self.password = password
        self.token_cache = token_cache
        self.api_base_url = api_base_url.rstrip('/')
        self.pickup_location = pickup_location
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.api_base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    # === Transport ===

    def _login(self) -> str:
        if not self.email or not self.password:
            raise ShippingProviderException("Shiprocket credentials are not configured", 'authenticate')

        logger.info("Authenticating with Shiprocket")
        response = self._send('authenticate', 'POST', '/auth/login',
                              json={'email': self.email, 'password': self.password})
        if response.status_code >= 400:
            raise ShippingProviderException(_error_message(response), 'authenticate', response.status_code)

        token = _json(response, 'authenticate').get('token')
        if not token:
            raise ShippingProviderException("login response carried no token", 'authenticate')
        return token

    def _send(self, operation: str, method: str, path: str, token: str = None, **kwargs) -> httpx.Response:
        headers = {'Content-Type': 'application/json'}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        try:
            with self._client() as client:
                return client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException:
            raise ShippingProviderException(f"request timed out after {self.timeout}s", operation)
        except httpx.HTTPError as e:
            raise ShippingProviderException(str(e), operation)

    def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        token = self.token_cache.get(self._login)
        response = self._send(operation, method, path, token=token, **kwargs)

        if response.status_code == 401:
            logger.info(f"Shiprocket token rejected during {operation}; refreshing")
            self.token_cache.invalidate(token)
            token = self.token_cache.get(self._login)
            response = self._send(operation, method, path, token=token, **kwargs)

        if response.status_code >= 400:
            raise ShippingProviderException(_error_message(response), operation, response.status_code)
        return _json(response, operation)

    def _call(self, operation: str, method: str, path: str, **kwargs) -> ProviderResult:
        try:
            return ProviderResult.ok(self._request(operation, method, path, **kwargs))
        except ShippingProviderException as e:
            logger.error(e.message)
            return ProviderResult.fail(e.message, status_code=e.http_status)

    # === API ===

    def create_shipment(self, order) -> ProviderResult:
        """
        Book an ad-hoc shipment for `order` (a shopcore Order).
        """
        address = order.address
        if len(address.address) < ADDRESS_MIN_LENGTH:
            return ProviderResult.fail(f"Address cannot be shorter than {ADDRESS_MIN_LENGTH} characters")
        if len(address.address) > ADDRESS_MAX_LENGTH:
            return ProviderResult.fail(f"Address cannot be longer than {ADDRESS_MAX_LENGTH} characters")
        if not POSTCODE_RE.match(address.pincode):
            return ProviderResult.fail("Pincode must be 6 digits")

        first_name, _, last_name = order.customer_name.partition(' ')
        payload = {
            'order_id': order.order_number,
            'order_date': timezone.localdate(order.created_at).isoformat(),
            'pickup_location': self.pickup_location,
            'billing_customer_name': first_name,
            'billing_last_name': last_name,
            'billing_address': address.address,
            'billing_address_2': address.landmark,
            'billing_city': address.city,
            'billing_pincode': address.pincode,
            'billing_state': address.state,
            'billing_country': address.country,
            'billing_email': order.customer_email,
            'billing_phone': order.customer_phone,
            'shipping_is_billing': True,
            'order_items': [
                {
                    'name': item.product_name,
                    'sku': re.sub(r'\s+', '-', item.product_name).lower(),
                    'units': item.quantity,
                    'selling_price': float(item.unit_price),
                }
                for item in order.items.all()
            ],
            'payment_method': 'COD' if order.payment_method == 'cod' else 'Prepaid',
            'shipping_charges': 0,
            'giftwrap_charges': 0,
            'transaction_charges': 0,
            'total_discount': 0,
            'sub_total': float(order.total_amount),
            **DEFAULT_DIMENSIONS,
        }

        result = self._call('create_shipment', 'POST', '/orders/create/adhoc', json=payload)
        if result:
            logger.info(
                f"Booked shipment {result.data.get('shipment_id')} for order {order.order_number}"
            )
        return result

    def track(self, awb: str) -> ProviderResult:
        result = self._call('track', 'GET', f'/courier/track/awb/{awb}')
        if not result:
            return ProviderResult.fail("Tracking unavailable", status_code=result.status_code)
        return ProviderResult.ok(result.data.get('tracking_data', result.data))

    def check_serviceability(self, pickup_postcode: str, delivery_postcode: str,
                             weight: float = 0.5, cod: bool = False) -> ProviderResult:
        if not POSTCODE_RE.match(str(pickup_postcode)):
            return ProviderResult.fail("Pickup postcode must be 6 digits", status_code=400)
        if not POSTCODE_RE.match(str(delivery_postcode)):
            return ProviderResult.fail("Delivery postcode must be 6 digits", status_code=400)

        return self._call('serviceability', 'GET', '/courier/serviceability', params={
            'pickup_postcode': pickup_postcode,
            'delivery_postcode': delivery_postcode,
            'weight': float(weight),
            'cod': 1 if cod else 0,
        })

    def cancel_shipment(self, awbs: List[str]) -> ProviderResult:
        return self._call('cancel_shipment', 'POST', '/orders/cancel/shipment/awbs', json={'awbs': list(awbs)})

    def pickup_locations(self) -> ProviderResult:
        return self._call('pickup_locations', 'GET', '/settings/company/pickup')


def _json(response: httpx.Response, operation: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        raise ShippingProviderException("invalid JSON in response", operation, response.status_code)
    return data if isinstance(data, dict) else {'data': data}


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get('message') or f"HTTP {response.status_code}"
    except (ValueError, AttributeError):
        return f"HTTP {response.status_code}"


# One token per process, shared by every client built from settings
_token_cache = TokenCache()


def get_client() -> ShiprocketClient:
    return ShiprocketClient(
        email=settings.SHIPROCKET_EMAIL,
        password=settings.SHIPROCKET_PASSWORD,
        token_cache=_token_cache,
        api_base_url=settings.SHIPROCKET_API_URL,
        pickup_location=settings.SHIPROCKET_PICKUP_LOCATION,
        timeout=settings.PROVIDER_HTTP_TIMEOUT,
    )
