"""
API Serializers for Request/Response handling
"""
from rest_framework import serializers

from apps.shipstream.models import DeliveryStatus
from apps.shopcore.status import OrderStatus, PaymentMethod


# =============================================================================
# Auth
# =============================================================================

class RegisterRequestSerializer(serializers.Serializer):
    mobile = serializers.CharField(max_length=20, help_text="10-digit mobile number")
    password = serializers.CharField(write_only=True, help_text="At least 4 characters")
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    email = serializers.EmailField(required=False, allow_blank=True, allow_null=True, default=None)


class LoginRequestSerializer(serializers.Serializer):
    mobile = serializers.CharField(max_length=20)
    password = serializers.CharField(write_only=True)


class ProfileUpdateSerializer(serializers.Serializer):
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    email = serializers.EmailField(required=False, allow_null=True)
    preferences = serializers.DictField(required=False)
    health_profile = serializers.DictField(required=False, help_text="Age, goals, conditions, ...")


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(write_only=True)
    new_password = serializers.CharField(write_only=True)


class UserSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    mobile = serializers.CharField()
    first_name = serializers.CharField()
    last_name = serializers.CharField()
    full_name = serializers.CharField()
    email = serializers.EmailField(allow_null=True)
    role = serializers.CharField()
    preferences = serializers.DictField()
    health_profile = serializers.DictField()
    created_at = serializers.DateTimeField()


class AuthResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    token = serializers.CharField()
    user = UserSerializer()


# =============================================================================
# Catalog
# =============================================================================

class ProductSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    name = serializers.CharField()
    slug = serializers.CharField(allow_null=True)
    description = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    stock_quantity = serializers.IntegerField()
    in_stock = serializers.SerializerMethodField()
    category = serializers.CharField()
    categories = serializers.ListField(source='category_list', child=serializers.CharField())
    sku = serializers.CharField(allow_null=True)
    image_url = serializers.CharField()
    benefits = serializers.ListField()
    ingredients = serializers.ListField()
    is_featured = serializers.BooleanField()

    def get_in_stock(self, obj) -> bool:
        return obj.stock_quantity > 0


class CategorySerializer(serializers.Serializer):
    value = serializers.CharField()
    label = serializers.CharField()
    count = serializers.IntegerField()


class StockUpdateSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(required=False, min_value=0, help_text="Set stock to this value")
    delta = serializers.IntegerField(required=False, help_text="Add (or remove, if negative) units")

    def validate(self, attrs):
        if ('quantity' in attrs) == ('delta' in attrs):
            raise serializers.ValidationError("Provide exactly one of quantity or delta")
        return attrs


# =============================================================================
# Orders
# =============================================================================

class OrderItemRequestSerializer(serializers.Serializer):
    product_id = serializers.CharField(help_text="Product UUID")
    quantity = serializers.IntegerField(min_value=1)


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Items, address and contact for a new order. Prices come from the catalog.
    """
    items = OrderItemRequestSerializer(many=True, allow_empty=False)
    delivery_address = serializers.DictField(
        help_text="address, city, state, pincode (6 digits), optional landmark"
    )
    customer_details = serializers.DictField(help_text="name, phone (10 digits), optional email")
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class CreateOrderRequestSerializer(CheckoutRequestSerializer):
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.COD)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class OrderItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField(allow_null=True)
    product_name = serializers.CharField()
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)


class OrderSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    order_number = serializers.CharField()
    status = serializers.CharField()
    status_display = serializers.CharField()
    payment_method = serializers.CharField()
    razorpay_order_id = serializers.CharField(source='provider_order_id', allow_null=True)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    customer_name = serializers.CharField()
    customer_email = serializers.CharField()
    customer_phone = serializers.CharField()
    delivery_address = serializers.DictField()
    notes = serializers.CharField()
    items = OrderItemSerializer(many=True)
    can_be_cancelled = serializers.BooleanField()
    can_be_refunded = serializers.BooleanField()
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


# =============================================================================
# Payments
# =============================================================================

class VerifyPaymentSerializer(serializers.Serializer):
    razorpay_order_id = serializers.CharField()
    razorpay_payment_id = serializers.CharField()
    razorpay_signature = serializers.CharField()


class RefundRequestSerializer(serializers.Serializer):
    order_id = serializers.CharField(help_text="Order UUID or order number")
    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True, default=None,
        help_text="Partial refund amount; omit for a full refund"
    )
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class PaymentSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    order_id = serializers.UUIDField()
    order_number = serializers.CharField(source='order.order_number')
    razorpay_payment_id = serializers.CharField(source='provider_payment_id')
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    method = serializers.CharField()
    status = serializers.CharField()
    fee = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    tax = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    refund_id = serializers.CharField()
    refunded_amount = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    created_at = serializers.DateTimeField()


# =============================================================================
# Tracking
# =============================================================================

class TrackingEventSerializer(serializers.Serializer):
    status = serializers.CharField()
    location = serializers.CharField()
    description = serializers.CharField()
    source = serializers.CharField()
    timestamp = serializers.DateTimeField()


class DeliverySerializer(serializers.Serializer):
    id = serializers.UUIDField()
    order_id = serializers.UUIDField()
    order_number = serializers.CharField(source='order.order_number')
    tracking_id = serializers.CharField(allow_null=True)
    shipment_id = serializers.CharField()
    courier_name = serializers.CharField()
    status = serializers.CharField()
    status_display = serializers.CharField()
    current_location = serializers.CharField()
    estimated_delivery = serializers.DateTimeField(allow_null=True)
    delivered_at = serializers.DateTimeField(allow_null=True)
    tracking_url = serializers.CharField()
    remarks = serializers.CharField()
    events = TrackingEventSerializer(source='tracking_events', many=True)


class ServiceabilityRequestSerializer(serializers.Serializer):
    delivery_postcode = serializers.CharField(max_length=6)
    pickup_postcode = serializers.CharField(max_length=6, required=False, allow_blank=True, default='')
    weight = serializers.FloatField(required=False, default=0.5, min_value=0.01, help_text="kg")
    cod = serializers.BooleanField(required=False, default=False)


class ManualTrackingUpdateSerializer(serializers.Serializer):
    order_id = serializers.CharField(help_text="Order UUID or order number")
    status = serializers.ChoiceField(choices=DeliveryStatus.choices)
    location = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    courier_name = serializers.CharField(required=False, allow_blank=True, default='')


class CourierUpdateSerializer(serializers.Serializer):
    tracking_id = serializers.CharField(required=False, allow_blank=True)
    order_id = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField()
    location = serializers.CharField(required=False, allow_blank=True)
    estimated_delivery = serializers.CharField(required=False, allow_blank=True)
    courier_name = serializers.CharField(required=False, allow_blank=True)
    remarks = serializers.CharField(required=False, allow_blank=True)


class CancelShipmentSerializer(serializers.Serializer):
    order_id = serializers.CharField(help_text="Order UUID or order number")


# =============================================================================
# System
# =============================================================================

class HealthCheckSerializer(serializers.Serializer):
    """
    Serializer for health check response.
    """
    status = serializers.CharField()
    version = serializers.CharField()
    database = serializers.CharField()
    providers = serializers.DictField()
    timestamp = serializers.DateTimeField()
