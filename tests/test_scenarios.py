"""End-to-end flows through the HTTP API."""
import json

import pytest

from apps.payguard.models import Payment
from apps.shipstream.models import Delivery, DeliveryStatus
from apps.shopcore.models import Order, Product

from .fakes import sign_payment, sign_webhook

pytestmark = pytest.mark.django_db


def _checkout_payload(product, quantity):
    return {
        'items': [{'product_id': str(product.id), 'quantity': quantity}],
        'delivery_address': {'address': '12 MG Road, Indiranagar', 'city': 'Bengaluru',
                             'state': 'Karnataka', 'pincode': '560038'},
        'customer_details': {'name': 'Asha Rao', 'phone': '9876543210', 'email': 'asha@example.com'},
    }


def _start_online_checkout(client, product, quantity=1):
    response = client.post('/api/payments/create-order/', _checkout_payload(product, quantity), format='json')
    assert response.status_code == 201
    return response.json()['data']


def _verify(client, provider_order_id, payment_id):
    return client.post('/api/payments/verify-payment/', {
        'razorpay_order_id': provider_order_id,
        'razorpay_payment_id': payment_id,
        'razorpay_signature': sign_payment(provider_order_id, payment_id),
    }, format='json')


def test_cash_on_delivery_order(customer_client, ashwagandha):
    response = customer_client.post('/api/orders/', _checkout_payload(ashwagandha, 2), format='json')

    assert response.status_code == 201
    order = Order.objects.get(order_number=response.json()['data']['order_number'])
    assert order.status == 'processing'
    assert order.stock_committed
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 3


def test_online_payment_confirms_order(customer_client, ashwagandha, django_capture_on_commit_callbacks,
                                       mailoutbox):
    checkout = _start_online_checkout(customer_client, ashwagandha)
    assert checkout['amount'] == 45900
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 5

    with django_capture_on_commit_callbacks(execute=True):
        response = _verify(customer_client, checkout['razorpay_order_id'], 'pay_E2E1')

    assert response.status_code == 200
    order = Order.objects.get(provider_order_id=checkout['razorpay_order_id'])
    assert order.status == 'paid'
    payment = Payment.objects.get(order=order)
    assert payment.status == Payment.STATUS_COMPLETED
    assert payment.provider_payment_id == 'pay_E2E1'
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 4
    assert [m.subject for m in mailoutbox] == [f"Order Confirmation - {order.order_number}"]


def test_webhook_and_verify_race_applies_once(customer_client, api_client, ashwagandha,
                                               django_capture_on_commit_callbacks, mailoutbox):
    checkout = _start_online_checkout(customer_client, ashwagandha)
    body = json.dumps({'event': 'payment.captured', 'payload': {
        'payment': {'entity': {'id': 'pay_E2E3', 'order_id': checkout['razorpay_order_id'],
                               'amount': 45900, 'method': 'card'}},
    }}).encode()

    with django_capture_on_commit_callbacks(execute=True):
        for _ in range(2):
            hook = api_client.post('/api/webhooks/razorpay/', data=body, content_type='application/json',
                                   HTTP_X_RAZORPAY_SIGNATURE=sign_webhook(body))
            assert hook.status_code == 200
        verify = _verify(customer_client, checkout['razorpay_order_id'], 'pay_E2E3')

    assert verify.json()['message'] == 'Payment already verified'
    order = Order.objects.get(provider_order_id=checkout['razorpay_order_id'])
    assert order.status == 'paid'
    assert Payment.objects.filter(order=order).count() == 1
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 4
    assert len(mailoutbox) == 1


def test_refund_of_processing_order(customer_client, admin_client, ashwagandha, razorpay_api):
    checkout = _start_online_checkout(customer_client, ashwagandha, quantity=2)
    _verify(customer_client, checkout['razorpay_order_id'], 'pay_E2E4')
    order_number = checkout['order']['order_number']

    processing = admin_client.put(f'/api/orders/{order_number}/status/', {'status': 'processing'}, format='json')
    assert processing.json()['data']['status'] == 'processing'
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 3

    response = customer_client.post('/api/payments/refund/', {'order_id': order_number, 'reason': 'Allergy'},
                                    format='json')

    assert response.status_code == 200
    assert response.json()['data']['order']['status'] == 'refunded'
    assert razorpay_api.refunds[0]['payment_id'] == 'pay_E2E4'
    assert Payment.objects.get(provider_payment_id='pay_E2E4').status == Payment.STATUS_REFUNDED
    assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 5


def test_shiprocket_delivery_notifies_once(api_client, shipped_order, django_capture_on_commit_callbacks,
                                           mailoutbox):
    payload = {'awb': 'AWB55550001', 'current_status': 'DELIVERED', 'order_id': shipped_order.order_number}

    with django_capture_on_commit_callbacks(execute=True):
        for _ in range(2):
            response = api_client.post('/api/webhooks/shiprocket/', payload, format='json',
                                       HTTP_X_API_KEY='ship-hook-token')
            assert response.json()['handled'] is True

    assert Order.objects.get(pk=shipped_order.pk).status == 'delivered'
    delivery = Delivery.objects.get(order=shipped_order)
    assert delivery.status == DeliveryStatus.DELIVERED
    assert delivery.delivered_at is not None
    assert delivery.tracking_events.count() == 1
    assert [m.subject for m in mailoutbox] == [
        f"Your Order Has Been Delivered - {shipped_order.order_number}"
    ]
