"""
Payment Service

Checkout intents, signature verification, refunds and Razorpay webhook
ingestion. The synchronous verify path and the webhook path share
record_capture, so a capture reported twice is applied once.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.core.exceptions import (
    InvalidTransitionException,
    NotFoundException,
    PaymentProviderException,
    PaymentVerificationException,
    StorefrontException,
    ValidationException,
)
from apps.core.utils import from_minor_units, to_minor_units
from apps.shopcore.models import Order
from apps.shopcore.services import OrderWorkflow, find_order
from apps.shopcore.status import OrderStatus, PaymentMethod, can_refund, is_legal
from . import gateway as razorpay
from .models import Payment

logger = logging.getLogger(__name__)


class PaymentService:

    def __init__(self, gateway=None, workflow: Optional[OrderWorkflow] = None):
        self.gateway = gateway or razorpay.get_gateway()
        self.workflow = workflow or OrderWorkflow(gateway=self.gateway)

    # === Checkout ===

    def open_checkout(self, user, items, delivery_address, customer_details, notes: str = '') -> Dict[str, Any]:
        """
        Create an online order plus its payment intent and return what the
        client needs to launch the provider checkout.
        """
        order = self.workflow.create_order(
            user=user,
            items=items,
            delivery_address=delivery_address,
            customer_details=customer_details,
            payment_method=PaymentMethod.RAZORPAY,
            notes=notes,
        )
        return {
            'order': order,
            'razorpay_order_id': order.provider_order_id,
            'amount': to_minor_units(order.total_amount),
            'currency': order.currency,
            'key_id': self.gateway.key_id,
        }

    # === Verification ===

    def verify_payment(self, provider_order_id: str, provider_payment_id: str, signature: str,
                       user=None) -> Tuple[Order, bool]:
        """
        Check the checkout signature and record the capture.

        A mismatch moves the order to payment_failed where that edge is legal
        and raises PaymentVerificationException; stock and notifications are
        untouched. Returns (order, applied) where applied is False for a
        repeated verify of the same payment.
        """
        if not provider_order_id or not provider_payment_id or not signature:
            raise ValidationException("Missing payment verification data")

        order = Order.objects.filter(provider_order_id=provider_order_id).first()
        if order is None or (user is not None and order.user_id != user.id and not user.is_admin):
            raise NotFoundException("Order", provider_order_id)

        if not self.gateway.verify_payment_signature(provider_order_id, provider_payment_id, signature):
            logger.warning(
                f"Signature mismatch for payment {provider_payment_id} on order {order.order_number}"
            )
            self._mark_failed(order, "Signature verification failed")
            raise PaymentVerificationException("Invalid payment signature")

        details = self._fetch_details(provider_payment_id)
        return self.record_capture(order, provider_payment_id, details)

    def _fetch_details(self, provider_payment_id: str) -> Dict[str, Any]:
        try:
            return self.gateway.fetch_payment(provider_payment_id)
        except PaymentProviderException as e:
            logger.warning(f"Could not fetch details for payment {provider_payment_id}: {e.message}")
            return {}

    def _mark_failed(self, order: Order, reason: str) -> bool:
        with transaction.atomic():
            order = self.workflow.lock(order)
            if not is_legal(order.status, OrderStatus.PAYMENT_FAILED):
                return False
            return self.workflow.transition(order, OrderStatus.PAYMENT_FAILED, notes=reason)

    def record_capture(self, order: Order, provider_payment_id: str,
                       details: Optional[Dict[str, Any]] = None) -> Tuple[Order, bool]:
        """
        Move the order to paid, commit stock and persist the Payment, once.
        """
        details = details or {}
        with transaction.atomic():
            order = self.workflow.lock(order)

            existing = Payment.objects.filter(provider_payment_id=provider_payment_id).first()
            if existing is not None and existing.status != Payment.STATUS_FAILED:
                self._apply_details(existing, details)
                logger.info(f"Payment {provider_payment_id} already recorded for order {order.order_number}")
                return order, False

            if order.status not in (OrderStatus.PAYMENT_PENDING, OrderStatus.PAYMENT_FAILED):
                if order.payments.filter(status__in=Payment.SUCCESSFUL_STATUSES).exists():
                    logger.error(
                        f"Second capture {provider_payment_id} on already paid order "
                        f"{order.order_number}; needs manual reconciliation"
                    )
                    return order, False

            self.workflow.transition(order, OrderStatus.PAID)
            self.workflow.commit_stock(order, strict=False)

            payment = existing or Payment(
                order=order,
                provider_order_id=order.provider_order_id or '',
                provider_payment_id=provider_payment_id,
            )
            payment.amount = from_minor_units(details['amount']) if details.get('amount') else order.total_amount
            payment.currency = details.get('currency') or order.currency
            payment.status = Payment.STATUS_COMPLETED
            payment.error_description = ''
            self._apply_details(payment, details, save=False)
            payment.save()

            self.workflow.notify(order, 'payment_confirmed')
            if settings.SHIPPING_AUTO_BOOK_ON_PAYMENT:
                order_id = order.pk
                transaction.on_commit(lambda: self.workflow.shipping.book_shipment_for(order_id))

        logger.info(f"Recorded payment {provider_payment_id} for order {order.order_number}")
        return order, True

    @staticmethod
    def _apply_details(payment: Payment, details: Dict[str, Any], save: bool = True) -> None:
        if not details:
            return
        if details.get('method'):
            payment.method = details['method']
        if details.get('fee') is not None:
            payment.fee = from_minor_units(details['fee'])
        if details.get('tax') is not None:
            payment.tax = from_minor_units(details['tax'])
        if save:
            payment.save(update_fields=['method', 'fee', 'tax', 'updated_at'])

    # === Refunds ===

    def refund(self, user, order_id, amount: Optional[Decimal] = None, reason: str = '') -> Tuple[Order, Payment]:
        order = find_order(order_id, user=None if user.is_admin else user)

        if not can_refund(order.status, order.payment_method):
            raise InvalidTransitionException(
                order.status, OrderStatus.REFUNDED, "Order cannot be refunded in current status"
            )
        payment = order.payments.filter(
            status__in=[Payment.STATUS_COMPLETED, Payment.STATUS_REFUND_PENDING]
        ).order_by('-created_at').first()
        if payment is None:
            raise InvalidTransitionException(
                order.status, OrderStatus.REFUNDED, "Order has no completed payment to refund"
            )

        if amount is not None:
            amount = Decimal(str(amount))
            if amount <= 0 or amount > payment.amount:
                raise ValidationException("Refund amount must be positive and at most the paid amount",
                                          field='amount')

        # Claim the payment so only one caller reaches the provider.
        claimed = Payment.objects.filter(pk=payment.pk, status=Payment.STATUS_COMPLETED).update(
            status=Payment.STATUS_REFUND_PENDING, updated_at=timezone.now()
        )
        if not claimed:
            raise InvalidTransitionException(
                order.status, OrderStatus.REFUNDED, "Refund already in progress for this order"
            )

        try:
            refund = self.gateway.refund(
                payment.provider_payment_id,
                amount,
                notes={'reason': reason or 'Customer request', 'order_number': order.order_number},
            )
        except Exception:
            Payment.objects.filter(pk=payment.pk, status=Payment.STATUS_REFUND_PENDING).update(
                status=Payment.STATUS_COMPLETED, updated_at=timezone.now()
            )
            raise
        refunded_amount = from_minor_units(refund['amount']) if refund.get('amount') else (amount or payment.amount)

        with transaction.atomic():
            order = self.workflow.lock(order)
            applied = self._apply_refund(order, payment, refund.get('id', ''), refunded_amount, reason)

        if applied:
            self.workflow.notify(order, 'status_update')
        return order, payment

    def _apply_refund(self, order: Order, payment: Payment, refund_id: str,
                      refunded_amount: Decimal, reason: str = '') -> bool:
        payment.status = Payment.STATUS_REFUNDED
        payment.refund_id = refund_id or payment.refund_id
        payment.refunded_amount = refunded_amount
        payment.refunded_at = payment.refunded_at or timezone.now()
        payment.save(update_fields=['status', 'refund_id', 'refunded_amount', 'refunded_at', 'updated_at'])

        applied = self.workflow.transition(
            order, OrderStatus.REFUNDED, notes=f"Refunded: {reason}" if reason else 'Refunded'
        )
        if applied:
            self.workflow.release_stock(order)
        return applied

    # === Webhooks ===

    def handle_webhook(self, body: bytes, signature: str, event_id: str = '') -> Dict[str, Any]:
        """
        Verify and dispatch a Razorpay webhook.

        Raises only for a bad signature or unparseable body. Processing errors
        are logged with the event id and reported as handled=False so the
        provider is not made to retry an event we cannot apply.
        """
        if not self.gateway.verify_webhook_signature(body, signature):
            logger.warning(f"Rejected Razorpay webhook {event_id or '-'}: bad signature")
            raise PaymentVerificationException("Invalid webhook signature")

        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationException("Invalid JSON payload")
        if not isinstance(event, dict):
            raise ValidationException("Invalid JSON payload")

        event_type = event.get('event', '')
        handler = self.WEBHOOK_HANDLERS.get(event_type)
        if handler is None:
            logger.info(f"Ignoring Razorpay webhook {event_type} ({event_id or '-'})")
            return {'event': event_type, 'handled': False}

        try:
            handler(self, event.get('payload') or {})
        except StorefrontException as e:
            logger.error(f"Razorpay webhook {event_type} ({event_id or '-'}) not applied: {e.message}")
            return {'event': event_type, 'handled': False, 'error': e.message}
        except Exception:
            logger.exception(f"Razorpay webhook {event_type} ({event_id or '-'}) crashed")
            return {'event': event_type, 'handled': False, 'error': 'processing error'}

        return {'event': event_type, 'handled': True}

    def _order_for_entity(self, entity: Dict[str, Any]) -> Order:
        provider_order_id = entity.get('order_id') or entity.get('id')
        order = Order.objects.filter(provider_order_id=provider_order_id).first() if provider_order_id else None
        if order is None:
            raise NotFoundException("Order", provider_order_id)
        return order

    def _on_payment_captured(self, payload: Dict[str, Any]) -> None:
        payment = (payload.get('payment') or {}).get('entity') or {}
        if not payment.get('id'):
            raise ValidationException("Webhook payment entity has no id")
        order = self._order_for_entity(payment)
        self.record_capture(order, payment['id'], payment)

    def _on_order_paid(self, payload: Dict[str, Any]) -> None:
        payment = (payload.get('payment') or {}).get('entity') or {}
        order_entity = (payload.get('order') or {}).get('entity') or {}
        if not payment.get('id'):
            raise ValidationException("Webhook payment entity has no id")
        order = self._order_for_entity({'order_id': payment.get('order_id') or order_entity.get('id')})
        self.record_capture(order, payment['id'], payment)

    def _on_payment_failed(self, payload: Dict[str, Any]) -> None:
        payment = (payload.get('payment') or {}).get('entity') or {}
        order = self._order_for_entity(payment)
        reason = payment.get('error_description') or 'Payment failed'
        if payment.get('id'):
            Payment.objects.get_or_create(
                provider_payment_id=payment['id'],
                defaults={
                    'order': order,
                    'provider_order_id': order.provider_order_id or '',
                    'amount': from_minor_units(payment['amount']) if payment.get('amount') else order.total_amount,
                    'currency': payment.get('currency') or order.currency,
                    'method': payment.get('method') or '',
                    'status': Payment.STATUS_FAILED,
                    'error_description': reason[:255],
                },
            )
        if self._mark_failed(order, reason):
            logger.info(f"Order {order.order_number} marked payment_failed: {reason}")

    def _on_refund_created(self, payload: Dict[str, Any]) -> None:
        refund = (payload.get('refund') or {}).get('entity') or {}
        payment = Payment.objects.filter(provider_payment_id=refund.get('payment_id')).select_related('order').first()
        if payment is None:
            raise NotFoundException("Payment", refund.get('payment_id'))

        with transaction.atomic():
            order = self.workflow.lock(payment.order)
            if not is_legal(order.status, OrderStatus.REFUNDED) and order.status != OrderStatus.REFUNDED:
                logger.warning(
                    f"Refund {refund.get('id')} reported for order {order.order_number} in {order.status}"
                )
                payment.status = Payment.STATUS_REFUNDED
                payment.refund_id = refund.get('id', '')
                payment.save(update_fields=['status', 'refund_id', 'updated_at'])
                return
            refunded_amount = from_minor_units(refund['amount']) if refund.get('amount') else payment.amount
            applied = self._apply_refund(order, payment, refund.get('id', ''), refunded_amount)

        if applied:
            self.workflow.notify(order, 'status_update')

    WEBHOOK_HANDLERS = {
        'payment.captured': _on_payment_captured,
        'order.paid': _on_order_paid,
        'payment.failed': _on_payment_failed,
        'refund.created': _on_refund_created,
    }

    # === Queries ===

    @staticmethod
    def history(user, limit: int = 20, offset: int = 0):
        payments = Payment.objects.filter(order__user=user).select_related('order')
        return payments.order_by('-created_at')[offset:offset + limit]

    @staticmethod
    def order_payments(user, order_id):
        order = find_order(order_id, user=None if user.is_admin else user)
        return order, list(order.payments.order_by('-created_at'))

    @staticmethod
    def stats(user) -> Dict[str, Any]:
        stats = Payment.objects.filter(order__user=user).aggregate(
            total_payments=Count('id'),
            successful_payments=Count('id', filter=Q(status=Payment.STATUS_COMPLETED)),
            failed_payments=Count('id', filter=Q(status=Payment.STATUS_FAILED)),
            refunded_payments=Count('id', filter=Q(status=Payment.STATUS_REFUNDED)),
            total_paid=Sum('amount', filter=Q(status__in=Payment.SUCCESSFUL_STATUSES)),
            total_refunded=Sum('refunded_amount', filter=Q(status=Payment.STATUS_REFUNDED)),
        )
        stats['total_paid'] = stats['total_paid'] or Decimal('0.00')
        stats['total_refunded'] = stats['total_refunded'] or Decimal('0.00')
        return stats
