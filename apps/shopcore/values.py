"""
Structured value types stored as JSON on Order rows.

Each type converts explicitly at the storage boundary: `to_dict()` on the way
in, `from_dict()` on the way out. `from_dict()` validates, so a malformed row
surfaces as a ValidationException instead of a half-parsed dict.
"""
import re
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from apps.core.exceptions import ValidationException

PINCODE_RE = re.compile(r'^[1-9][0-9]{5}$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _required_str(data: Dict[str, Any], key: str, min_length: int = 1, max_length: int = 255) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationException(f"{key} is required", field=key)
    value = value.strip()
    if len(value) < min_length or len(value) > max_length:
        raise ValidationException(
            f"{key} must be between {min_length} and {max_length} characters", field=key
        )
    return value


@dataclass(frozen=True)
class DeliveryAddress:
    address: str
    city: str
    state: str
    pincode: str
    landmark: str = ''
    country: str = 'India'

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DeliveryAddress':
        if not isinstance(data, dict):
            raise ValidationException("Delivery address is required", field='delivery_address')
        # older rows used "street" for the first line
        if 'address' not in data and 'street' in data:
            data = dict(data, address=data['street'])
        pincode = str(data.get('pincode', '')).strip()
        if not PINCODE_RE.match(pincode):
            raise ValidationException("Valid 6-digit pincode is required", field='pincode')
        return cls(
            address=_required_str(data, 'address', min_length=3, max_length=500),
            city=_required_str(data, 'city', min_length=2, max_length=100),
            state=_required_str(data, 'state', min_length=2, max_length=100),
            pincode=pincode,
            landmark=(data.get('landmark') or '').strip(),
            country=(data.get('country') or 'India').strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    def one_line(self) -> str:
        parts = [self.address, self.landmark, self.city, self.state, self.pincode]
        return ', '.join(p for p in parts if p)


@dataclass(frozen=True)
class CustomerContact:
    name: str
    phone: str
    email: str = ''

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CustomerContact':
        if not isinstance(data, dict):
            raise ValidationException("Customer details are required", field='customer_details')
        name = _required_str(data, 'name', min_length=2, max_length=255)
        phone = re.sub(r'\D', '', str(data.get('phone', '')))
        if len(phone) == 12 and phone.startswith('91'):
            phone = phone[2:]
        if not re.fullmatch(r'[6-9][0-9]{9}', phone):
            raise ValidationException("Valid Indian mobile number is required", field='phone')
        email = (data.get('email') or '').strip()
        if email and not EMAIL_RE.match(email):
            raise ValidationException("Valid email is required", field='email')
        return cls(name=name, phone=phone, email=email)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class LineItem:
    """Snapshot of a product at order time."""
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItem':
        try:
            quantity = int(data['quantity'])
            unit_price = Decimal(str(data['unit_price']))
            return cls(
                product_id=str(data['product_id']),
                product_name=str(data['product_name']),
                unit_price=unit_price,
                quantity=quantity,
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise ValidationException(f"Malformed line item: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'unit_price': str(self.unit_price),
            'quantity': self.quantity,
            'subtotal': str(self.subtotal),
        }
