"""
ShopCore Models - Storefront catalog and orders
Tables: Products, Orders, OrderItems
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from apps.core.models import BaseModel
from .status import OrderStatus, PaymentMethod, can_cancel, can_refund, display_name
from .values import CustomerContact, DeliveryAddress, LineItem


class Product(BaseModel):
    """
    Supplement in the catalog.
    `category` may hold several comma-separated categories.
    """
    CATEGORY_CHOICES = [
        ('vitamins', 'Vitamins'),
        ('minerals', 'Minerals'),
        ('proteins', 'Proteins'),
        ('herbal', 'Herbal'),
        ('immunity', 'Immunity'),
        ('weight-management', 'Weight Management'),
        ('fitness', 'Fitness'),
        ('wellness', 'Wellness'),
        ('digestive-health', 'Digestive Health'),
        ('heart-health', 'Heart Health'),
    ]

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, blank=True, null=True)
    description = models.TextField(blank=True, default='')
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    stock_quantity = models.PositiveIntegerField(default=0)
    category = models.CharField(max_length=255, blank=True, default='')
    sku = models.CharField(max_length=50, unique=True, blank=True, null=True)
    image_url = models.URLField(blank=True, default='')
    benefits = models.JSONField(default=list, blank=True)
    ingredients = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    is_featured = models.BooleanField(default=False)

    class Meta:
        db_table = 'shopcore_products'
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['-is_featured', '-created_at']

    def __str__(self):
        return f"{self.name} (₹{self.price})"

    @property
    def category_list(self):
        return [c.strip() for c in self.category.split(',') if c.strip()]


class Order(BaseModel):
    """
    Customer order. Status changes go through OrderWorkflow.transition,
    never through direct assignment.
    """
    order_number = models.CharField(max_length=40, unique=True)
    user = models.ForeignKey('accounts.User', on_delete=models.PROTECT, related_name='orders')
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.CREATED)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.COD)
    provider_order_id = models.CharField(
        max_length=100, unique=True, blank=True, null=True,
        help_text="Payment intent id at the payment provider"
    )
    stock_committed = models.BooleanField(
        default=False, help_text="Stock has been decremented for this order's items"
    )

    # Contact snapshot
    customer_name = models.CharField(max_length=255)
    customer_email = models.EmailField(blank=True, default='')
    customer_phone = models.CharField(max_length=15)

    delivery_address = models.JSONField(default=dict)
    notes = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'shopcore_orders'
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status']),
        ]

    def __str__(self):
        return f"Order {self.order_number} - {self.status}"

    @property
    def status_display(self) -> str:
        return display_name(self.status)

    @property
    def address(self) -> DeliveryAddress:
        return DeliveryAddress.from_dict(self.delivery_address)

    @property
    def contact(self) -> CustomerContact:
        return CustomerContact(name=self.customer_name, phone=self.customer_phone, email=self.customer_email)

    @property
    def can_be_cancelled(self) -> bool:
        return can_cancel(self.status)

    @property
    def can_be_refunded(self) -> bool:
        return can_refund(self.status, self.payment_method)

    def line_items(self):
        return [item.as_line_item() for item in self.items.all()]

    def latest_payment(self):
        """Most recent successful payment for this order, if any."""
        return (
            self.payments
            .filter(status__in=['completed', 'refunded'])
            .order_by('-created_at')
            .first()
        )


class OrderItem(BaseModel):
    """
    Line item with product name and price captured at order time.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, related_name='order_items')
    product_name = models.CharField(max_length=255)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = 'shopcore_order_items'
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.quantity} x {self.product_name}"

    def as_line_item(self) -> LineItem:
        return LineItem(
            product_id=str(self.product_id) if self.product_id else '',
            product_name=self.product_name,
            unit_price=self.unit_price,
            quantity=self.quantity,
        )
