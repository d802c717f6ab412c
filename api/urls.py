"""
API URL Configuration
"""
from django.urls import path
from . import views

app_name = 'api'

urlpatterns = [
    # Auth
    path('auth/register', views.RegisterView.as_view(), name='register'),
    path('auth/login', views.LoginView.as_view(), name='login'),
    path('auth/profile', views.ProfileView.as_view(), name='profile'),
    path('auth/change-password', views.ChangePasswordView.as_view(), name='change-password'),

    # Products
    path('products/', views.ProductListView.as_view(), name='product-list'),
    path('products/featured/', views.FeaturedProductsView.as_view(), name='product-featured'),
    path('products/categories/', views.CategoryListView.as_view(), name='product-categories'),
    path('products/<uuid:product_id>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/<uuid:product_id>/stock/', views.ProductStockView.as_view(), name='product-stock'),

    # Orders
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/stats/', views.OrderStatsView.as_view(), name='order-stats'),
    path('orders/<str:order_id>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<str:order_id>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<str:order_id>/cancel/', views.OrderCancelView.as_view(), name='order-cancel'),

    # Payments
    path('payments/create-order/', views.CreatePaymentOrderView.as_view(), name='payment-create-order'),
    path('payments/verify-payment/', views.VerifyPaymentView.as_view(), name='payment-verify'),
    path('payments/refund/', views.RefundView.as_view(), name='payment-refund'),
    path('payments/history/', views.PaymentHistoryView.as_view(), name='payment-history'),
    path('payments/stats/', views.PaymentStatsView.as_view(), name='payment-stats'),
    path('payments/order/<str:order_id>/', views.OrderPaymentsView.as_view(), name='payment-order'),

    # Tracking
    path('tracking/order/<str:order_id>/', views.OrderTrackingView.as_view(), name='tracking-order'),
    path('tracking/delivery/<str:delivery_id>/', views.DeliveryDetailView.as_view(), name='tracking-delivery'),
    path('tracking/check-serviceability/', views.ServiceabilityView.as_view(), name='tracking-serviceability'),
    path('tracking/manual-update/', views.ManualTrackingUpdateView.as_view(), name='tracking-manual-update'),
    path('tracking/webhook/update/', views.CourierUpdateView.as_view(), name='tracking-courier-update'),
    path('tracking/stats/', views.TrackingStatsView.as_view(), name='tracking-stats'),
    path('tracking/cancel-shipment/', views.CancelShipmentView.as_view(), name='tracking-cancel-shipment'),
    path('tracking/pickup-locations/', views.PickupLocationsView.as_view(), name='tracking-pickup-locations'),

    # Webhooks
    path('webhooks/razorpay/', views.RazorpayWebhookView.as_view(), name='webhook-razorpay'),
    path('webhooks/shiprocket/', views.ShiprocketWebhookView.as_view(), name='webhook-shiprocket'),

    # Health check
    path('health/', views.HealthCheckView.as_view(), name='health'),
]
