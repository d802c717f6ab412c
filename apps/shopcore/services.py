"""
Order Workflow

Creates orders, owns the status transition routine and the stock
bookkeeping that rides on it. Payment, shipping and webhook code call into
OrderWorkflow rather than writing Order.status themselves.
"""
import logging
import uuid
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, F, Q, Sum
from django.utils import timezone

from apps.core.exceptions import (
    InsufficientStockException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from apps.core.utils import generate_reference
from apps.notifications import service as notifications
from apps.payguard import gateway as razorpay
from .models import Order, OrderItem, Product
from .status import OrderStatus, PaymentMethod, can_cancel, check_transition
from .values import CustomerContact, DeliveryAddress, LineItem

logger = logging.getLogger(__name__)

MAX_TRANSITION_ATTEMPTS = 3


def find_order(identifier, user=None) -> Order:
    """
    Look an order up by UUID or order number, optionally scoped to its owner.
    """
    lookup = Q(order_number=str(identifier))
    try:
        lookup |= Q(id=uuid.UUID(str(identifier)))
    except ValueError:
        pass

    orders = Order.objects.filter(lookup)
    if user is not None:
        orders = orders.filter(user=user)
    order = orders.first()
    if order is None:
        raise NotFoundException("Order", identifier)
    return order


class OrderWorkflow:
    """
    Order lifecycle operations.

    Collaborators are resolved lazily so tests and callers can inject their own.
    """

    def __init__(self, gateway=None, notifier=None, shipping=None):
        self._gateway = gateway
        self._notifier = notifier
        self._shipping = shipping

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = razorpay.get_gateway()
        return self._gateway

    @property
    def notifier(self):
        if self._notifier is None:
            self._notifier = notifications.get_notifier()
        return self._notifier

    @property
    def shipping(self):
        if self._shipping is None:
            from apps.shipstream.services import ShippingService
            self._shipping = ShippingService(workflow=self)
        return self._shipping

    # === Creation ===

    def create_order(
        self,
        user,
        items: Iterable[Dict[str, Any]],
        delivery_address: Dict[str, Any],
        customer_details: Dict[str, Any],
        payment_method: str = PaymentMethod.COD,
        notes: str = '',
    ) -> Order:
        """
        Validate stock, price items from the catalog and persist the order.

        Online orders open a payment intent first; when that fails no order is
        written. COD orders take their stock immediately.
        """
        if payment_method not in PaymentMethod.values:
            raise ValidationException("Payment method must be cod or razorpay", field='payment_method')

        address = DeliveryAddress.from_dict(delivery_address)
        contact = CustomerContact.from_dict(customer_details)
        line_items = self._price_items(items)
        total = sum((item.subtotal for item in line_items), Decimal('0.00'))
        order_number = generate_reference('ORD')

        provider_order_id = None
        if payment_method == PaymentMethod.RAZORPAY:
            provider_order_id = self.gateway.create_order(
                amount=total,
                currency=settings.STORE_CURRENCY,
                receipt=order_number,
                notes={'customer': contact.name, 'order_number': order_number},
            )

        with transaction.atomic():
            order = Order.objects.create(
                order_number=order_number,
                user=user,
                total_amount=total,
                currency=settings.STORE_CURRENCY,
                status=OrderStatus.CREATED,
                payment_method=payment_method,
                provider_order_id=provider_order_id,
                customer_name=contact.name,
                customer_email=contact.email,
                customer_phone=contact.phone,
                delivery_address=address.to_dict(),
                notes=notes or '',
            )
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    subtotal=item.subtotal,
                )
                for item in line_items
            ])

            if payment_method == PaymentMethod.COD:
                self.commit_stock(order, strict=True)
                self.transition(order, OrderStatus.PROCESSING)
            else:
                self.transition(order, OrderStatus.PAYMENT_PENDING)

        logger.info(
            f"Created order {order.order_number} ({payment_method}) for user {user.id}: "
            f"{len(line_items)} items, total {total}"
        )
        return order

    def _price_items(self, items: Iterable[Dict[str, Any]]) -> List[LineItem]:
        """Resolve requested items against the live catalog. Client prices are ignored."""
        requested: "OrderedDict[str, int]" = OrderedDict()
        for raw in items or []:
            product_id = str(raw.get('product_id') or raw.get('productId') or '').strip()
            if not product_id:
                raise ValidationException("Product ID is required", field='items')
            try:
                quantity = int(raw.get('quantity', 0))
            except (TypeError, ValueError):
                quantity = 0
            if quantity < 1:
                raise ValidationException("Quantity must be a positive integer", field='items')
            requested[product_id] = requested.get(product_id, 0) + quantity

        if not requested:
            raise ValidationException("Order must contain at least one item", field='items')

        line_items = []
        for product_id, quantity in requested.items():
            product = self._active_product(product_id)
            if product.stock_quantity < quantity:
                raise InsufficientStockException(product.name, quantity, product.stock_quantity)
            line_items.append(LineItem(
                product_id=str(product.id),
                product_name=product.name,
                unit_price=product.price,
                quantity=quantity,
            ))
        return line_items

    @staticmethod
    def _active_product(product_id: str) -> Product:
        try:
            pk = uuid.UUID(product_id)
        except ValueError:
            raise NotFoundException("Product", product_id)
        product = Product.objects.filter(id=pk, is_active=True).first()
        if product is None:
            raise NotFoundException("Product", product_id)
        return product

    # === Transitions ===

    def transition(self, order: Order, target: str, expected: Optional[str] = None, **fields) -> bool:
        """
        Move `order` to `target` if that edge is legal from its current status.

        The write is a conditional UPDATE keyed on (id, prior status), so of two
        concurrent callers only one applies the change. Returns True when this
        call performed the transition and False when the order was already in
        `target`; any other conflict raises InvalidTransitionException.

        `expected` pins the prior status: if the order has moved elsewhere the
        call raises instead of re-evaluating from the new status.
        """
        if expected is not None and order.status != expected and order.status != target:
            raise InvalidTransitionException(order.status, target)

        for _ in range(MAX_TRANSITION_ATTEMPTS):
            current = order.status
            if current == target:
                return False
            check_transition(current, target)

            now = timezone.now()
            updated = (
                Order.objects
                .filter(pk=order.pk, status=current)
                .update(status=target, updated_at=now, **fields)
            )
            if updated:
                order.status = target
                order.updated_at = now
                for name, value in fields.items():
                    setattr(order, name, value)
                logger.info(f"Order {order.order_number}: {current} -> {target}")
                return True

            # someone else moved the order; re-evaluate from where it is now
            order.refresh_from_db(fields=['status', 'updated_at', 'stock_committed'])
            if expected is not None and order.status not in (expected, target):
                raise InvalidTransitionException(order.status, target)

        raise InvalidTransitionException(
            order.status, target, f"Order {order.order_number} is being updated concurrently"
        )

    @staticmethod
    def lock(order: Order) -> Order:
        """Re-read the order under a row lock. Call inside transaction.atomic()."""
        return Order.objects.select_for_update().get(pk=order.pk)

    # === Stock ===

    def commit_stock(self, order: Order, strict: bool = True) -> bool:
        """
        Decrement stock for the order's items exactly once.

        With strict=True a shortfall raises InsufficientStockException (and the
        surrounding transaction rolls back). With strict=False the sale already
        happened at the provider, so stock is floored at zero and the oversell
        is logged for reconciliation.
        """
        claimed = Order.objects.filter(pk=order.pk, stock_committed=False).update(stock_committed=True)
        if not claimed:
            return False
        order.stock_committed = True

        for item in order.items.all():
            if item.product_id is None:
                continue
            taken = (
                Product.objects
                .filter(pk=item.product_id, stock_quantity__gte=item.quantity)
                .update(stock_quantity=F('stock_quantity') - item.quantity)
            )
            if taken:
                continue
            available = Product.objects.filter(pk=item.product_id).values_list('stock_quantity', flat=True).first() or 0
            if strict:
                raise InsufficientStockException(item.product_name, item.quantity, available)
            logger.error(
                f"Oversold {item.product_name} on order {order.order_number}: "
                f"needed {item.quantity}, had {available}"
            )
            Product.objects.filter(pk=item.product_id).update(stock_quantity=0)
        return True

    def release_stock(self, order: Order) -> bool:
        """Return previously committed stock for the order's items, exactly once."""
        released = Order.objects.filter(pk=order.pk, stock_committed=True).update(stock_committed=False)
        if not released:
            return False
        order.stock_committed = False

        for item in order.items.all():
            if item.product_id is None:
                continue
            Product.objects.filter(pk=item.product_id).update(stock_quantity=F('stock_quantity') + item.quantity)
        logger.info(f"Restored stock for order {order.order_number}")
        return True

    # === Status operations ===

    def update_status(self, order: Order, target: str, notes: str = '') -> Order:
        """
        Admin status change. Entering `shipped` books a shipment after commit
        when the order has none yet.
        """
        if target == OrderStatus.REFUNDED:
            raise ValidationException("Refunds must go through the refund endpoint", field='status')
        if target in (OrderStatus.PAID, OrderStatus.PAYMENT_FAILED):
            raise ValidationException("Payment statuses are set by payment verification", field='status')

        fields = {'notes': notes} if notes else {}
        with transaction.atomic():
            order = self.lock(order)
            applied = self.transition(order, target, **fields)
            if applied and target == OrderStatus.CANCELLED:
                self.release_stock(order)

        if not applied:
            return order

        if target == OrderStatus.SHIPPED and not has_delivery(order):
            order_id = order.pk
            transaction.on_commit(lambda: self.shipping.book_shipment_for(order_id))

        self.notify(order, 'delivered' if target == OrderStatus.DELIVERED else 'status_update')
        return order

    def cancel_order(self, order: Order, reason: str = '') -> Order:
        if not can_cancel(order.status):
            raise InvalidTransitionException(
                order.status, OrderStatus.CANCELLED, "Order cannot be cancelled in current status"
            )

        with transaction.atomic():
            order = self.lock(order)
            applied = self.transition(
                order, OrderStatus.CANCELLED, notes=f"Cancelled: {reason}" if reason else 'Cancelled by customer'
            )
            if applied:
                self.release_stock(order)

        if applied:
            self.notify(order, 'status_update')
        return order

    # === Notifications ===

    def notify(self, order: Order, milestone: str) -> None:
        """
        Fan the milestone out to the customer once the current transaction
        commits. Failures are logged by the notifier and never propagate.
        """
        order_id = order.pk

        def _send():
            fresh = Order.objects.filter(pk=order_id).first()
            if fresh is not None:
                self.notifier.notify_order(fresh, milestone)

        transaction.on_commit(_send)

    # === Queries ===

    @staticmethod
    def list_orders(user, status: Optional[str] = None, limit: int = 20, offset: int = 0):
        orders = Order.objects.filter(user=user).prefetch_related('items')
        if status:
            orders = orders.filter(status=status)
        return orders.order_by('-created_at')[offset:offset + limit]

    @staticmethod
    def order_stats(user) -> Dict[str, Any]:
        stats = Order.objects.filter(user=user).aggregate(
            total_orders=Count('id'),
            delivered_orders=Count('id', filter=Q(status=OrderStatus.DELIVERED)),
            shipped_orders=Count('id', filter=Q(status=OrderStatus.SHIPPED)),
            processing_orders=Count('id', filter=Q(status=OrderStatus.PROCESSING)),
            total_amount=Sum('total_amount'),
            average_order_value=Avg('total_amount'),
        )
        stats['total_amount'] = stats['total_amount'] or Decimal('0.00')
        stats['average_order_value'] = (
            Decimal(stats['average_order_value']).quantize(Decimal('0.01'))
            if stats['average_order_value'] is not None else Decimal('0.00')
        )
        return stats


def has_delivery(order: Order) -> bool:
    from apps.shipstream.models import Delivery
    return Delivery.objects.filter(order=order).exists()
