"""
Shipping Service

Books shipments, ingests courier status updates (webhook, courier endpoint,
admin), and builds the customer-facing tracking view. Order status changes
go through OrderWorkflow.transition like everywhere else.
"""
import hmac
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.core.exceptions import (
    NotFoundException,
    StorefrontException,
    UnauthorizedException,
    ValidationException,
)
from apps.core.results import ProviderResult
from apps.shopcore.models import Order
from apps.shopcore.services import OrderWorkflow, find_order
from apps.shopcore.status import OrderStatus, is_legal
from . import client as shiprocket
from .models import Delivery, DeliveryStatus, TrackingEvent

logger = logging.getLogger(__name__)

# Shiprocket status strings, normalised to lower_snake_case
PROVIDER_STATUS_MAP = {
    'new': DeliveryStatus.CREATED,
    'awb_assigned': DeliveryStatus.CREATED,
    'label_generated': DeliveryStatus.CREATED,
    'manifest_generated': DeliveryStatus.CREATED,
    'pickup_scheduled': DeliveryStatus.CREATED,
    'pickup_generated': DeliveryStatus.CREATED,
    'pickup_queued': DeliveryStatus.CREATED,
    'picked_up': DeliveryStatus.SHIPPED,
    'shipped': DeliveryStatus.SHIPPED,
    'in_transit': DeliveryStatus.IN_TRANSIT,
    'reached_at_destination_hub': DeliveryStatus.IN_TRANSIT,
    'out_for_delivery': DeliveryStatus.OUT_FOR_DELIVERY,
    'delivered': DeliveryStatus.DELIVERED,
    'rto_initiated': DeliveryStatus.RETURNED,
    'rto_in_transit': DeliveryStatus.RETURNED,
    'rto_delivered': DeliveryStatus.RETURNED,
    'returned': DeliveryStatus.RETURNED,
    'canceled': DeliveryStatus.CANCELLED,
    'cancelled': DeliveryStatus.CANCELLED,
    'lost': DeliveryStatus.LOST,
}

# Customer hears about these delivery milestones
NOTIFY_STATUSES = (DeliveryStatus.SHIPPED, DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED)

STATS_TIMEFRAMES = {
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
}


def map_provider_status(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    key = str(raw).strip().lower().replace('-', '_').replace(' ', '_')
    if key in DeliveryStatus.values:
        return key
    return PROVIDER_STATUS_MAP.get(key)


class ShippingService:

    def __init__(self, client=None, workflow: Optional[OrderWorkflow] = None):
        self._client = client
        self.workflow = workflow or OrderWorkflow(shipping=self)

    @property
    def client(self):
        if self._client is None:
            self._client = shiprocket.get_client()
        return self._client

    # === Booking ===

    def book_shipment(self, order: Order) -> ProviderResult:
        """
        Create the courier shipment for a paid/processing order and move the
        order to shipped. A second call for the same order returns the
        existing delivery; a call made while a booking is in flight is
        rejected with 409.
        """
        with transaction.atomic():
            order = self.workflow.lock(order)
            existing = Delivery.objects.filter(order=order).first()
            if existing is None:
                if order.status not in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED):
                    return ProviderResult.fail(f"Order in status '{order.status}' cannot be shipped",
                                               status_code=409)
                # Placeholder row claims the order until the provider answers.
                delivery = Delivery.objects.create(order=order, status=DeliveryStatus.CREATED)

        if existing is not None:
            if existing.shipment_id or existing.tracking_id:
                return ProviderResult.ok(_delivery_summary(existing, already_booked=True))
            return ProviderResult.fail("Shipment booking already in progress", status_code=409)

        try:
            result = self.client.create_shipment(order)
        except Exception:
            delivery.delete()
            raise
        if not result:
            delivery.delete()
            logger.warning(f"Shipment booking failed for order {order.order_number}: {result.error}")
            return result

        data = result.data
        with transaction.atomic():
            order = self.workflow.lock(order)
            delivery.provider_order_id = str(data.get('order_id') or '')
            delivery.shipment_id = str(data.get('shipment_id') or '')
            delivery.tracking_id = data.get('awb_code') or None
            delivery.courier_name = data.get('courier_name') or ''
            delivery.tracking_url = data.get('tracking_url') or ''
            delivery.status = DeliveryStatus.SHIPPED
            delivery.save()
            TrackingEvent.objects.create(
                delivery=delivery,
                status=DeliveryStatus.SHIPPED,
                description=f"Shipped via {delivery.courier_name or 'courier partner'}",
                source='provider',
                timestamp=timezone.now(),
            )
            shipped_now = self._advance_to_shipped(order)

        if shipped_now:
            self.workflow.notify(order, 'status_update')
        return ProviderResult.ok(_delivery_summary(delivery))

    def book_shipment_for(self, order_id) -> None:
        """After-commit hook: best effort, never raises."""
        order = Order.objects.filter(pk=order_id).first()
        if order is None:
            return
        try:
            result = self.book_shipment(order)
        except Exception:
            logger.exception(f"Shipment booking crashed for order {order.order_number}")
            return
        if not result:
            logger.warning(f"Order {order.order_number} left without shipment: {result.error}")

    def _advance_to_shipped(self, order: Order) -> bool:
        moved = False
        if order.status == OrderStatus.PAID:
            moved = self.workflow.transition(order, OrderStatus.PROCESSING) or moved
        if order.status == OrderStatus.PROCESSING:
            moved = self.workflow.transition(order, OrderStatus.SHIPPED) or moved
        return moved

    def cancel_shipment(self, order_id) -> Delivery:
        order = find_order(order_id)
        delivery = Delivery.objects.filter(order=order).first()
        if delivery is None or not delivery.tracking_id:
            raise NotFoundException("Shipment for order", order.order_number)

        result = self.client.cancel_shipment([delivery.tracking_id])
        if not result:
            raise ValidationException(f"Shipment cancellation failed: {result.error}")

        self.apply_tracking_update(delivery, DeliveryStatus.CANCELLED, description='Shipment cancelled',
                                   source='manual')
        delivery.refresh_from_db()
        return delivery

    def pickup_locations(self) -> ProviderResult:
        return self.client.pickup_locations()

    # === Status updates ===

    def apply_tracking_update(
        self,
        delivery: Delivery,
        status: str,
        location: str = '',
        description: str = '',
        estimated_delivery=None,
        courier_name: str = '',
        remarks: str = '',
        source: str = 'webhook',
    ) -> Delivery:
        """
        Record a delivery status change and move the order along with it.

        `delivered` moves the order to delivered and notifies once;
        shipped, in_transit and out_for_delivery pull a processing order to
        shipped.
        """
        if status not in DeliveryStatus.values:
            raise ValidationException(f"Unknown delivery status '{status}'", field='status')

        with transaction.atomic():
            delivery = Delivery.objects.select_for_update().get(pk=delivery.pk)
            previous = delivery.status

            delivery.status = status
            if location:
                delivery.current_location = location
            if courier_name:
                delivery.courier_name = courier_name
            if remarks:
                delivery.remarks = remarks
            if estimated_delivery:
                delivery.estimated_delivery = estimated_delivery
            if status == DeliveryStatus.DELIVERED and delivery.delivered_at is None:
                delivery.delivered_at = timezone.now()
            delivery.save()

            description = description or remarks
            latest = delivery.tracking_events.order_by('-timestamp').first()
            # providers resend the same scan; keep one event per distinct update
            if latest is None or (latest.status, latest.location, latest.description) != (status, location, description):
                TrackingEvent.objects.create(
                    delivery=delivery,
                    status=status,
                    location=location,
                    description=description,
                    source=source,
                    timestamp=timezone.now(),
                )

            order = self.workflow.lock(delivery.order)
            delivered_now = False
            if status == DeliveryStatus.DELIVERED:
                self._advance_to_shipped(order)
                if is_legal(order.status, OrderStatus.DELIVERED):
                    delivered_now = self.workflow.transition(order, OrderStatus.DELIVERED)
                elif order.status != OrderStatus.DELIVERED:
                    logger.warning(
                        f"Delivery reported for order {order.order_number} in status {order.status}"
                    )
            elif status in (DeliveryStatus.SHIPPED, DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY):
                self._advance_to_shipped(order)

        if delivered_now:
            self.workflow.notify(order, 'delivered')
        elif status in NOTIFY_STATUSES and status != DeliveryStatus.DELIVERED and previous != status:
            self.workflow.notify(order, 'status_update')

        logger.info(f"Delivery {delivery.tracking_id or delivery.pk}: {previous} -> {status} ({source})")
        return delivery

    def handle_webhook(self, payload: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        """
        Shiprocket status push. Returns what was applied; unknown shipments
        and statuses are logged and ignored.
        """
        self._check_webhook_token(token)

        awb = str(payload.get('awb') or '').strip()
        raw_status = payload.get('current_status') or payload.get('shipment_status')
        status = map_provider_status(raw_status)

        delivery = self._find_delivery(awb=awb, order_ref=payload.get('order_id'))
        if delivery is None:
            logger.warning(f"Shiprocket webhook for unknown shipment awb={awb or '-'}")
            return {'handled': False, 'reason': 'unknown shipment'}
        if status is None:
            logger.info(f"Shiprocket webhook status '{raw_status}' ignored for awb {awb}")
            return {'handled': False, 'reason': 'unmapped status'}

        scans = payload.get('scans')
        last_scan = scans[-1] if isinstance(scans, list) and scans and isinstance(scans[-1], dict) else {}
        try:
            self.apply_tracking_update(
                delivery,
                status,
                location=last_scan.get('location') or payload.get('current_location') or '',
                description=last_scan.get('activity') or str(raw_status),
                estimated_delivery=_parse_date(payload.get('etd')),
                courier_name=payload.get('courier_name') or '',
                source='webhook',
            )
        except StorefrontException as e:
            logger.error(f"Shiprocket webhook for awb {awb or '-'} not applied: {e.message}")
            return {'handled': False, 'error': e.message}
        except Exception:
            logger.exception(f"Shiprocket webhook for awb {awb or '-'} order {delivery.order.order_number} crashed")
            return {'handled': False, 'error': 'processing error'}
        return {'handled': True, 'status': status}

    def courier_update(self, data: Dict[str, Any], token: Optional[str] = None) -> Delivery:
        """Courier-partner push by tracking id or order id."""
        self._check_webhook_token(token)

        status = map_provider_status(data.get('status'))
        if status is None:
            raise ValidationException("Valid status is required", field='status')

        tracking_id = data.get('tracking_id')
        order_id = data.get('order_id')
        if not tracking_id and not order_id:
            raise ValidationException("Tracking ID or Order ID is required")

        delivery = self._find_delivery(awb=tracking_id, order_ref=order_id)
        if delivery is None:
            raise NotFoundException("Delivery", tracking_id or order_id)

        return self.apply_tracking_update(
            delivery,
            status,
            location=data.get('location') or '',
            description=data.get('remarks') or '',
            estimated_delivery=_parse_date(data.get('estimated_delivery')),
            courier_name=data.get('courier_name') or '',
            remarks=data.get('remarks') or '',
            source='webhook',
        )

    def manual_update(self, order_id, status: str, location: str = '', notes: str = '',
                      courier_name: str = '') -> Delivery:
        order = find_order(order_id)
        delivery = Delivery.objects.filter(order=order).first()
        if delivery is None:
            raise NotFoundException("Delivery for order", order.order_number)
        return self.apply_tracking_update(
            delivery, status, location=location, description=notes, courier_name=courier_name,
            remarks=notes, source='manual',
        )

    @staticmethod
    def _check_webhook_token(token: Optional[str]) -> None:
        expected = settings.SHIPROCKET_WEBHOOK_TOKEN
        if expected and not hmac.compare_digest(str(token or ''), expected):
            raise UnauthorizedException("Invalid webhook token")

    @staticmethod
    def _find_delivery(awb: Optional[str] = None, order_ref=None) -> Optional[Delivery]:
        if awb:
            delivery = Delivery.objects.filter(tracking_id=awb).select_related('order').first()
            if delivery is not None:
                return delivery
        if order_ref:
            try:
                order = find_order(order_ref)
            except NotFoundException:
                return None
            return Delivery.objects.filter(order=order).select_related('order').first()
        return None

    # === Queries ===

    def track(self, awb: str) -> ProviderResult:
        return self.client.track(awb)

    def check_serviceability(self, delivery_postcode: str, weight: float = 0.5, cod: bool = False,
                             pickup_postcode: Optional[str] = None) -> ProviderResult:
        return self.client.check_serviceability(
            pickup_postcode or settings.SHIPROCKET_PICKUP_POSTCODE, delivery_postcode, weight, cod
        )

    def order_tracking(self, identifier, live: bool = True) -> Dict[str, Any]:
        """
        Order, delivery, optional live courier data and timeline. Live
        tracking is best effort.
        """
        order = find_order(identifier)
        delivery = Delivery.objects.filter(order=order).first()

        live_tracking = None
        if live and delivery is not None and delivery.tracking_id:
            result = self.track(delivery.tracking_id)
            live_tracking = result.data if result else None

        return {
            'order': order,
            'delivery': delivery,
            'live_tracking': live_tracking,
            'timeline': build_timeline(order, delivery),
        }

    @staticmethod
    def get_delivery(identifier) -> Delivery:
        delivery = Delivery.objects.filter(tracking_id=str(identifier)).select_related('order').first()
        if delivery is None:
            try:
                delivery = Delivery.objects.filter(pk=identifier).select_related('order').first()
            except (ValueError, TypeError, ValidationError):
                delivery = None
        if delivery is None:
            raise NotFoundException("Delivery", identifier)
        return delivery

    @staticmethod
    def stats(timeframe: str = '7d') -> Dict[str, Any]:
        window = STATS_TIMEFRAMES.get(timeframe)
        if window is None:
            raise ValidationException("Timeframe must be one of 24h, 7d, 30d", field='timeframe')

        deliveries = Delivery.objects.filter(created_at__gte=timezone.now() - window)
        counts = deliveries.aggregate(
            total_shipments=Count('id'),
            delivered=Count('id', filter=Q(status=DeliveryStatus.DELIVERED)),
            in_transit=Count('id', filter=Q(status=DeliveryStatus.IN_TRANSIT)),
            shipped=Count('id', filter=Q(status=DeliveryStatus.SHIPPED)),
            out_for_delivery=Count('id', filter=Q(status=DeliveryStatus.OUT_FOR_DELIVERY)),
            returned=Count('id', filter=Q(status=DeliveryStatus.RETURNED)),
        )

        durations = [
            (d.delivered_at - d.created_at).total_seconds() / 86400
            for d in deliveries.filter(status=DeliveryStatus.DELIVERED, delivered_at__isnull=False)
        ]
        total = counts['total_shipments']
        counts['timeframe'] = timeframe
        counts['delivery_rate'] = (
            (Decimal(counts['delivered'] * 100) / total).quantize(Decimal('0.01')) if total else Decimal('0.00')
        )
        counts['avg_delivery_days'] = round(sum(durations) / len(durations), 1) if durations else None
        return counts


def build_timeline(order: Order, delivery: Optional[Delivery]) -> List[Dict[str, Any]]:
    """Customer-facing milestones reached so far."""
    events = {}
    if delivery is not None:
        for event in delivery.tracking_events.order_by('timestamp'):
            events.setdefault(event.status, event)

    timeline = [{
        'status': 'created',
        'title': 'Order Placed',
        'description': 'Your order has been received',
        'timestamp': order.created_at,
        'completed': True,
    }]

    if order.status in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED) \
            and order.payment_method != 'cod':
        payment = order.latest_payment()
        timeline.append({
            'status': 'paid',
            'title': 'Payment Confirmed',
            'description': 'Payment has been processed',
            'timestamp': payment.created_at if payment else order.updated_at,
            'completed': True,
        })

    if order.status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        timeline.append({
            'status': 'processing',
            'title': 'Order Processing',
            'description': 'Your order is being prepared',
            'timestamp': order.created_at,
            'completed': True,
        })

    if delivery is None:
        return timeline

    timeline.append({
        'status': 'shipped',
        'title': 'Order Shipped',
        'description': f"Shipped via {delivery.courier_name or 'courier partner'}",
        'timestamp': delivery.created_at,
        'completed': True,
        'tracking_id': delivery.tracking_id,
    })

    progress = (DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED)
    if delivery.status in progress:
        timeline.append({
            'status': 'in_transit',
            'title': 'In Transit',
            'description': delivery.current_location or 'Package is on the way',
            'timestamp': _event_time(events, DeliveryStatus.IN_TRANSIT, delivery),
            'completed': delivery.status != DeliveryStatus.IN_TRANSIT,
        })
    if delivery.status in progress[1:]:
        timeline.append({
            'status': 'out_for_delivery',
            'title': 'Out for Delivery',
            'description': 'Package is out for delivery',
            'timestamp': _event_time(events, DeliveryStatus.OUT_FOR_DELIVERY, delivery),
            'completed': delivery.status == DeliveryStatus.DELIVERED,
        })
    if delivery.status == DeliveryStatus.DELIVERED:
        timeline.append({
            'status': 'delivered',
            'title': 'Delivered',
            'description': 'Package has been delivered',
            'timestamp': delivery.delivered_at or delivery.updated_at,
            'completed': True,
        })
    return timeline


def _event_time(events, status, delivery):
    event = events.get(status)
    return event.timestamp if event is not None else delivery.updated_at


def _delivery_summary(delivery: Delivery, already_booked: bool = False) -> Dict[str, Any]:
    return {
        'delivery_id': str(delivery.id),
        'shipment_id': delivery.shipment_id,
        'tracking_id': delivery.tracking_id,
        'courier_name': delivery.courier_name,
        'status': delivery.status,
        'already_booked': already_booked,
    }


def _parse_date(value):
    """Courier date strings are best effort; anything unreadable is dropped."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = parse_datetime(value.strip().replace(' ', 'T', 1))
        except ValueError:
            return None
    else:
        return None
    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed
