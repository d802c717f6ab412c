"""
API Views for the GreenTap storefront

This module provides REST API endpoints for:
- Auth: registration, login, profile
- Products: catalog browsing and admin stock updates
- Orders: checkout, history, cancellation, admin status changes
- Payments: Razorpay checkout, verification, refunds, history
- Tracking: shipment tracking, serviceability, courier/admin updates
- Webhooks: Razorpay and Shiprocket callbacks
- Health Check: System health and status
"""
import json
import logging

from django.conf import settings
from django.db import connection
from django.utils import timezone
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts import services as accounts
from apps.accounts.authentication import IsAdminRole
from apps.core.exceptions import ValidationException
from apps.core.utils import parse_pagination
from apps.payguard.services import PaymentService
from apps.shipstream.services import ShippingService
from apps.shopcore import catalog
from apps.shopcore.services import OrderWorkflow, find_order

from .exceptions import error_response
from .serializers import (
    AuthResponseSerializer,
    CancelOrderSerializer,
    CancelShipmentSerializer,
    CategorySerializer,
    ChangePasswordSerializer,
    CheckoutRequestSerializer,
    CourierUpdateSerializer,
    CreateOrderRequestSerializer,
    DeliverySerializer,
    HealthCheckSerializer,
    LoginRequestSerializer,
    ManualTrackingUpdateSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PaymentSerializer,
    ProductSerializer,
    ProfileUpdateSerializer,
    RefundRequestSerializer,
    RegisterRequestSerializer,
    ServiceabilityRequestSerializer,
    StockUpdateSerializer,
    UserSerializer,
    VerifyPaymentSerializer,
)

logger = logging.getLogger(__name__)

PAGINATION_PARAMETERS = [
    OpenApiParameter('limit', int, description="Page size (max 100)"),
    OpenApiParameter('offset', int, description="Items to skip"),
]


def success(status_code=status.HTTP_200_OK, **body):
    return Response({"success": True, **body}, status=status_code)


def paginated(items, serializer_class, limit, offset):
    data = serializer_class(items, many=True).data
    return success(data=data, pagination={"limit": limit, "offset": offset, "count": len(data)})


# =============================================================================
# Auth
# =============================================================================

class RegisterView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(request=RegisterRequestSerializer, responses={201: AuthResponseSerializer},
                   description="Register a customer by mobile number")
    def post(self, request):
        serializer = RegisterRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = accounts.register_user(
            mobile=data['mobile'],
            password=data['password'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'] or None,
        )
        session = accounts.authenticate_user(user.mobile, data['password'])
        return success(
            status.HTTP_201_CREATED,
            message="User registered successfully",
            token=session['token'],
            user=UserSerializer(user).data,
        )


class LoginView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(request=LoginRequestSerializer, responses={200: AuthResponseSerializer},
                   description="Exchange mobile + password for a bearer token")
    def post(self, request):
        serializer = LoginRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = accounts.authenticate_user(
            serializer.validated_data['mobile'], serializer.validated_data['password']
        )
        return success(message="Login successful", token=session['token'],
                       user=UserSerializer(session['user']).data)


class ProfileView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: UserSerializer}, description="Current user's profile")
    def get(self, request):
        return success(user=UserSerializer(request.user).data)

    @extend_schema(request=ProfileUpdateSerializer, responses={200: UserSerializer},
                   description="Update names, email, preferences or health profile")
    def put(self, request):
        serializer = ProfileUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        user = accounts.update_profile(request.user, serializer.validated_data)
        return success(message="Profile updated successfully", user=UserSerializer(user).data)


class ChangePasswordView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=ChangePasswordSerializer, responses={200: None})
    def put(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        accounts.change_password(
            request.user,
            serializer.validated_data['current_password'],
            serializer.validated_data['new_password'],
        )
        return success(message="Password changed successfully")


# =============================================================================
# Products
# =============================================================================

class ProductListView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        parameters=[
            OpenApiParameter('category', str, description="Category name (substring match)"),
            OpenApiParameter('search', str, description="Search in name and description"),
            OpenApiParameter('featured', bool),
            *PAGINATION_PARAMETERS,
        ],
        responses={200: ProductSerializer(many=True)},
        description="Active products, featured first",
    )
    def get(self, request):
        params = request.query_params
        limit, offset = parse_pagination(params, default_limit=50)
        products = catalog.list_products(
            category=params.get('category'),
            search=params.get('search'),
            featured=params.get('featured', '').lower() == 'true',
            limit=limit,
            offset=offset,
        )
        return paginated(products, ProductSerializer, limit, offset)


class ProductDetailView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(responses={200: ProductSerializer})
    def get(self, request, product_id):
        return success(data=ProductSerializer(catalog.get_product(product_id)).data)


class FeaturedProductsView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(responses={200: ProductSerializer(many=True)}, description="Top featured products")
    def get(self, request):
        return success(data=ProductSerializer(catalog.featured_products(), many=True).data)


class CategoryListView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(responses={200: CategorySerializer(many=True)})
    def get(self, request):
        return success(data=CategorySerializer(catalog.list_categories(), many=True).data)


class ProductStockView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(request=StockUpdateSerializer, responses={200: ProductSerializer},
                   description="Set or adjust stock (admin)")
    def put(self, request, product_id):
        serializer = StockUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        product = catalog.adjust_stock(
            product_id,
            quantity=serializer.validated_data.get('quantity'),
            delta=serializer.validated_data.get('delta'),
        )
        return success(message="Stock updated successfully", data=ProductSerializer(product).data)


# =============================================================================
# Orders
# =============================================================================

class OrderListCreateView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        parameters=[OpenApiParameter('status', str), *PAGINATION_PARAMETERS],
        responses={200: OrderSerializer(many=True)},
        description="The current user's orders, newest first",
    )
    def get(self, request):
        limit, offset = parse_pagination(request.query_params)
        orders = OrderWorkflow.list_orders(
            request.user, status=request.query_params.get('status'), limit=limit, offset=offset
        )
        return paginated(orders, OrderSerializer, limit, offset)

    @extend_schema(request=CreateOrderRequestSerializer, responses={201: OrderSerializer},
                   description="Place an order. COD orders go straight to processing.")
    def post(self, request):
        serializer = CreateOrderRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderWorkflow().create_order(
            user=request.user,
            items=data['items'],
            delivery_address=data['delivery_address'],
            customer_details=data['customer_details'],
            payment_method=data['payment_method'],
            notes=data['notes'],
        )
        return success(status.HTTP_201_CREATED, message="Order created successfully",
                       data=OrderSerializer(order).data)


class OrderStatsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: None}, description="Order totals for the current user")
    def get(self, request):
        return success(data=OrderWorkflow.order_stats(request.user))


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: OrderSerializer})
    def get(self, request, order_id):
        order = find_order(order_id, user=None if request.user.is_admin else request.user)
        return success(data=OrderSerializer(order).data)


class OrderStatusView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(request=OrderStatusUpdateSerializer, responses={200: OrderSerializer},
                   description="Move an order along its lifecycle (admin)")
    def put(self, request, order_id):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderWorkflow().update_status(
            find_order(order_id),
            serializer.validated_data['status'],
            notes=serializer.validated_data['notes'],
        )
        return success(message="Order status updated successfully", data=OrderSerializer(order).data)


class OrderCancelView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CancelOrderSerializer, responses={200: OrderSerializer})
    def put(self, request, order_id):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = find_order(order_id, user=None if request.user.is_admin else request.user)
        order = OrderWorkflow().cancel_order(order, reason=serializer.validated_data['reason'])
        return success(message="Order cancelled successfully", data=OrderSerializer(order).data)


# =============================================================================
# Payments
# =============================================================================

class CreatePaymentOrderView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CheckoutRequestSerializer, responses={201: None},
                   description="Create an online order and its Razorpay payment intent")
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        checkout = PaymentService().open_checkout(
            user=request.user,
            items=data['items'],
            delivery_address=data['delivery_address'],
            customer_details=data['customer_details'],
            notes=data['notes'],
        )
        order = checkout.pop('order')
        return success(status.HTTP_201_CREATED, data={
            **checkout,
            'order': OrderSerializer(order).data,
        })


class VerifyPaymentView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=VerifyPaymentSerializer, responses={200: OrderSerializer},
                   description="Verify the checkout signature and confirm the order")
    def post(self, request):
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order, applied = PaymentService().verify_payment(
            data['razorpay_order_id'],
            data['razorpay_payment_id'],
            data['razorpay_signature'],
            user=request.user,
        )
        return success(
            message="Payment verified successfully" if applied else "Payment already verified",
            data=OrderSerializer(order).data,
        )


class RefundView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=RefundRequestSerializer, responses={200: OrderSerializer})
    def post(self, request):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order, payment = PaymentService().refund(
            request.user, data['order_id'], amount=data['amount'], reason=data['reason']
        )
        return success(
            message="Refund processed successfully",
            data={'order': OrderSerializer(order).data, 'payment': PaymentSerializer(payment).data},
        )


class PaymentHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=PAGINATION_PARAMETERS, responses={200: PaymentSerializer(many=True)})
    def get(self, request):
        limit, offset = parse_pagination(request.query_params)
        payments = PaymentService.history(request.user, limit=limit, offset=offset)
        return paginated(payments, PaymentSerializer, limit, offset)


class PaymentStatsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: None})
    def get(self, request):
        return success(data=PaymentService.stats(request.user))


class OrderPaymentsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: PaymentSerializer(many=True)})
    def get(self, request, order_id):
        order, payments = PaymentService.order_payments(request.user, order_id)
        return success(data={
            'order_number': order.order_number,
            'payments': PaymentSerializer(payments, many=True).data,
        })


# =============================================================================
# Tracking
# =============================================================================

class OrderTrackingView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(responses={200: None}, description="Public tracking by order id or order number")
    def get(self, request, order_id):
        tracking = ShippingService().order_tracking(order_id)
        order = tracking['order']
        delivery = tracking['delivery']
        return success(data={
            'order_number': order.order_number,
            'order_status': order.status,
            'order_status_display': order.status_display,
            'created_at': order.created_at,
            'delivery': DeliverySerializer(delivery).data if delivery else None,
            'live_tracking': tracking['live_tracking'],
            'timeline': tracking['timeline'],
        })


class DeliveryDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: DeliverySerializer})
    def get(self, request, delivery_id):
        delivery = ShippingService.get_delivery(delivery_id)
        if not request.user.is_admin and delivery.order.user_id != request.user.id:
            return error_response("Delivery not found", "NOT_FOUND", status.HTTP_404_NOT_FOUND)
        return success(data=DeliverySerializer(delivery).data)


class ServiceabilityView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(request=ServiceabilityRequestSerializer, responses={200: None})
    def post(self, request):
        serializer = ServiceabilityRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = ShippingService().check_serviceability(
            data['delivery_postcode'], weight=data['weight'], cod=data['cod'],
            pickup_postcode=data['pickup_postcode'] or None,
        )
        if not result:
            code = status.HTTP_400_BAD_REQUEST if result.status_code == 400 else status.HTTP_502_BAD_GATEWAY
            return error_response(result.error, "SERVICEABILITY_UNAVAILABLE", code)
        return success(data=result.data)


class ManualTrackingUpdateView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(request=ManualTrackingUpdateSerializer, responses={200: DeliverySerializer})
    def post(self, request):
        serializer = ManualTrackingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        delivery = ShippingService().manual_update(
            data['order_id'], data['status'], location=data['location'], notes=data['notes'],
            courier_name=data['courier_name'],
        )
        return success(message="Tracking updated successfully", data=DeliverySerializer(delivery).data)


class CourierUpdateView(APIView):
    """
    Status push from courier partners, authenticated by the shared webhook token.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=CourierUpdateSerializer, responses={200: DeliverySerializer})
    def post(self, request):
        serializer = CourierUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delivery = ShippingService().courier_update(
            serializer.validated_data, token=request.headers.get('x-api-key')
        )
        return success(message="Delivery status updated successfully",
                       data=DeliverySerializer(delivery).data)


class TrackingStatsView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(parameters=[OpenApiParameter('timeframe', str, enum=['24h', '7d', '30d'])],
                   responses={200: None})
    def get(self, request):
        return success(data=ShippingService.stats(request.query_params.get('timeframe', '7d')))


class CancelShipmentView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(request=CancelShipmentSerializer, responses={200: DeliverySerializer})
    def post(self, request):
        serializer = CancelShipmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delivery = ShippingService().cancel_shipment(serializer.validated_data['order_id'])
        return success(message="Shipment cancelled", data=DeliverySerializer(delivery).data)


class PickupLocationsView(APIView):
    permission_classes = [IsAdminRole]

    @extend_schema(responses={200: None})
    def get(self, request):
        result = ShippingService().pickup_locations()
        if not result:
            return error_response(result.error, "SHIPPING_PROVIDER_ERROR", status.HTTP_502_BAD_GATEWAY)
        return success(data=result.data)


# =============================================================================
# Webhooks
# =============================================================================

class RazorpayWebhookView(APIView):
    """
    Razorpay events. The signature covers the raw body, so it is read before
    anything parses the request.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=None, responses={200: None})
    def post(self, request):
        body = request.body
        event_id = request.headers.get('x-razorpay-event-id', '')
        result = PaymentService().handle_webhook(
            body, request.headers.get('x-razorpay-signature', ''), event_id=event_id
        )
        return success(**result)


class ShiprocketWebhookView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=None, responses={200: None})
    def post(self, request):
        body = request.body
        try:
            payload = json.loads(body)
        except ValueError:
            raise ValidationException("Invalid JSON payload")
        if not isinstance(payload, dict):
            raise ValidationException("Invalid JSON payload")

        result = ShippingService().handle_webhook(payload, token=request.headers.get('x-api-key'))
        return success(**result)


# =============================================================================
# System
# =============================================================================

class HealthCheckView(APIView):
    """
    System health check endpoint.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(
        responses={200: HealthCheckSerializer},
        description="Check system health status"
    )
    def get(self, request):
        # Check database connectivity
        db_status = "healthy"
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
        except Exception as e:
            db_status = f"unhealthy: {str(e)}"

        providers = {
            'razorpay': "configured" if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET else "not configured",
            'shiprocket': "configured" if settings.SHIPROCKET_EMAIL else "not configured",
            'email': "configured" if settings.EMAIL_HOST_USER else "not configured",
            'sms': "configured" if settings.TWILIO_ACCOUNT_SID else "disabled",
        }

        response_data = {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "version": "1.0.0",
            "database": db_status,
            "providers": providers,
            "timestamp": timezone.now().isoformat()
        }

        return Response(response_data, status=status.HTTP_200_OK)
