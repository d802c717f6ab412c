"""
Delivery channels for customer notifications.

Each channel renders `notifications/<key>...` templates and returns a
ProviderResult; nothing raised inside a channel escapes it.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from apps.core.results import ProviderResult

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class EmailChannel:
    name = 'email'

    def __init__(self, from_email: Optional[str] = None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, to: str, key: str, context: Dict[str, Any]) -> ProviderResult:
        try:
            subject = render_to_string(f'notifications/{key}_subject.txt', context).strip()
            text_body = render_to_string(f'notifications/{key}.txt', context)
            try:
                html_body = render_to_string(f'notifications/{key}.html', context)
            except TemplateDoesNotExist:
                html_body = None

            message = EmailMultiAlternatives(subject, text_body, self.from_email, [to])
            if html_body:
                message.attach_alternative(html_body, 'text/html')
            message.send()
        except Exception as e:
            logger.error(f"Email '{key}' to {to} failed: {e}")
            return ProviderResult.fail(str(e))

        logger.info(f"Email '{key}' sent to {to}")
        return ProviderResult.ok({'to': to, 'subject': subject})


class SmsChannel:
    """
    Twilio Messages API. Without credentials the channel only logs.
    """
    name = 'sms'

    def __init__(
        self,
        account_sid: str = '',
        auth_token: str = '',
        from_number: str = '',
        *,
        api_base_url: str = TWILIO_API_BASE,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_base_url = api_base_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @staticmethod
    def to_e164(phone: str) -> str:
        digits = ''.join(ch for ch in str(phone) if ch.isdigit())
        if len(digits) == 10:
            return f'+91{digits}'
        return f'+{digits}'

    def send(self, to: str, key: str, context: Dict[str, Any]) -> ProviderResult:
        try:
            body = render_to_string(f'notifications/{key}_sms.txt', context).strip()
        except Exception as e:
            logger.error(f"SMS '{key}' could not be rendered: {e}")
            return ProviderResult.fail(str(e))

        if not self.enabled:
            logger.info(f"SMS disabled; would have sent '{key}' to {to}")
            return ProviderResult.ok({'to': to, 'sent': False})

        try:
            with httpx.Client(
                base_url=self.api_base_url,
                auth=(self.account_sid, self.auth_token),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = client.post(
                    f'/Accounts/{self.account_sid}/Messages.json',
                    data={'To': self.to_e164(to), 'From': self.from_number, 'Body': body},
                )
        except httpx.HTTPError as e:
            logger.error(f"SMS '{key}' to {to} failed: {e}")
            return ProviderResult.fail(str(e))

        if response.status_code >= 400:
            logger.error(f"SMS '{key}' to {to} rejected ({response.status_code})")
            return ProviderResult.fail(f"HTTP {response.status_code}", status_code=response.status_code)

        logger.info(f"SMS '{key}' sent to {to}")
        return ProviderResult.ok({'to': to, 'sent': True, 'sid': response.json().get('sid')},
                                 status_code=response.status_code)
