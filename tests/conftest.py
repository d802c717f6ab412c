"""Pytest fixtures for the storefront tests."""
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from apps.accounts.models import User
from apps.accounts.services import register_user
from apps.accounts.tokens import issue_token
from apps.payguard import gateway as razorpay
from apps.payguard.services import PaymentService
from apps.shipstream import client as shiprocket
from apps.shipstream.client import TokenCache
from apps.shipstream.models import Delivery, DeliveryStatus
from apps.shipstream.services import ShippingService
from apps.shopcore.models import Product
from apps.shopcore.services import OrderWorkflow

from .fakes import FakeRazorpay, FakeShiprocket, sign_payment


# =============================================================================
# Providers
# =============================================================================

@pytest.fixture(autouse=True)
def razorpay_api(monkeypatch):
    """Every gateway built from settings talks to the fake."""
    api = FakeRazorpay()
    monkeypatch.setattr(razorpay, 'get_gateway', api.gateway)
    return api


@pytest.fixture(autouse=True)
def shiprocket_api(monkeypatch):
    api = FakeShiprocket()
    cache = TokenCache()
    monkeypatch.setattr(shiprocket, 'get_client', lambda: api.client(cache))
    return api


# =============================================================================
# Users
# =============================================================================

@pytest.fixture
def customer(db):
    return register_user('9876543210', 'secret123', first_name='Asha', last_name='Rao',
                         email='asha@example.com')


@pytest.fixture
def other_customer(db):
    return register_user('9123456789', 'secret456', first_name='Ravi', last_name='Kumar')


@pytest.fixture
def admin_user(db):
    user = register_user('9000000001', 'adminpass', first_name='Store', last_name='Admin')
    user.role = User.ROLE_ADMIN
    user.save(update_fields=['role'])
    return user


@pytest.fixture
def api_client():
    return APIClient()


def _client_for(user):
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(user)}")
    return client


@pytest.fixture
def customer_client(customer):
    return _client_for(customer)


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


# =============================================================================
# Catalog
# =============================================================================

@pytest.fixture
def whey(db):
    return Product.objects.create(
        name='Whey Protein Isolate 1kg',
        slug='whey-protein-isolate-1kg',
        category='proteins,fitness',
        price=Decimal('2899.00'),
        stock_quantity=10,
        sku='GT-WHEY',
        is_featured=True,
    )


@pytest.fixture
def ashwagandha(db):
    return Product.objects.create(
        name='Ashwagandha KSM-66',
        slug='ashwagandha-ksm-66',
        category='herbal,wellness',
        price=Decimal('459.00'),
        stock_quantity=5,
        sku='GT-ASHWA',
    )


@pytest.fixture
def delivery_address():
    return {
        'address': '12 MG Road, Indiranagar',
        'city': 'Bengaluru',
        'state': 'Karnataka',
        'pincode': '560038',
    }


@pytest.fixture
def customer_details():
    return {'name': 'Asha Rao', 'phone': '9876543210', 'email': 'asha@example.com'}


# =============================================================================
# Services and orders
# =============================================================================

@pytest.fixture
def workflow(razorpay_api, shiprocket_api):
    return OrderWorkflow()


@pytest.fixture
def payments(razorpay_api, workflow):
    return PaymentService(workflow=workflow)


@pytest.fixture
def shipping(shiprocket_api, workflow):
    return ShippingService(workflow=workflow)


@pytest.fixture
def place_cod_order(workflow, customer, delivery_address, customer_details):
    def _place(product, quantity=1, user=None):
        return workflow.create_order(
            user=user or customer,
            items=[{'product_id': str(product.id), 'quantity': quantity}],
            delivery_address=delivery_address,
            customer_details=customer_details,
        )
    return _place


@pytest.fixture
def place_online_order(payments, customer, delivery_address, customer_details):
    def _place(product, quantity=1, user=None):
        checkout = payments.open_checkout(
            user=user or customer,
            items=[{'product_id': str(product.id), 'quantity': quantity}],
            delivery_address=delivery_address,
            customer_details=customer_details,
        )
        return checkout['order']
    return _place


@pytest.fixture
def paid_order(place_online_order, payments, ashwagandha):
    """Online order for two units, captured through verify."""
    order = place_online_order(ashwagandha, quantity=2)
    order, _ = payments.verify_payment(
        order.provider_order_id, 'pay_test0001', sign_payment(order.provider_order_id, 'pay_test0001')
    )
    return order


@pytest.fixture
def shipped_order(place_cod_order, workflow, whey):
    """COD order with a booked delivery, already shipped."""
    order = place_cod_order(whey)
    Delivery.objects.create(order=order, tracking_id='AWB55550001', courier_name='Blue Dart',
                            status=DeliveryStatus.SHIPPED)
    return workflow.update_status(order, 'shipped')
