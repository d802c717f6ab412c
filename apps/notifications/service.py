"""
Notifier - fans an order milestone out to every channel the customer can be
reached on.
"""
import logging
from typing import Dict, List

from django.conf import settings

from apps.core.exceptions import ValidationException
from .channels import EmailChannel, SmsChannel

logger = logging.getLogger(__name__)

# milestone -> template key
MILESTONE_TEMPLATES = {
    'payment_confirmed': 'order_confirmation',
    'status_update': 'status_update',
    'delivered': 'delivery',
}


class Notifier:

    def __init__(self, email_channel=None, sms_channel=None, brand: str = 'GreenTap Health'):
        self.email_channel = email_channel
        self.sms_channel = sms_channel
        self.brand = brand

    def build_context(self, order) -> Dict:
        # missing reverse one-to-one raises a subclass of AttributeError
        delivery = getattr(order, 'delivery', None)
        try:
            address = order.address.one_line()
        except ValidationException:
            address = ''
        return {
            'brand': self.brand,
            'order': order,
            'items': list(order.items.all()),
            'status': order.status_display,
            'delivery': delivery,
            'address': address,
        }

    def notify_order(self, order, milestone: str) -> List[Dict]:
        """
        Send the milestone message. Returns one result per attempted channel;
        failures are logged, never raised.
        """
        key = MILESTONE_TEMPLATES.get(milestone)
        if key is None:
            logger.warning(f"Unknown notification milestone '{milestone}'")
            return []

        try:
            context = self.build_context(order)
        except Exception:
            logger.exception(f"Could not build notification context for order {order.pk}")
            return []

        results = []
        for channel, recipient in ((self.email_channel, order.customer_email),
                                   (self.sms_channel, order.customer_phone)):
            if channel is None or not recipient:
                continue
            try:
                result = channel.send(recipient, key, context)
            except Exception as e:
                logger.exception(f"{channel.name} channel crashed for order {order.order_number}")
                results.append({'channel': channel.name, 'success': False, 'error': str(e)})
                continue
            results.append({'channel': channel.name, 'success': result.success, 'error': result.error})

        logger.info(f"Notified '{milestone}' for order {order.order_number}: {results}")
        return results


def get_notifier() -> Notifier:
    return Notifier(
        email_channel=EmailChannel(),
        sms_channel=SmsChannel(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_FROM_NUMBER,
            timeout=settings.PROVIDER_HTTP_TIMEOUT,
        ),
        brand=settings.STORE_BRAND_NAME,
    )
