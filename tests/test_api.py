"""HTTP API: envelopes, auth, admin gate and the route groups."""
import json
import time
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from apps.accounts.models import User
from apps.accounts.tokens import issue_token, read_token
from apps.core.exceptions import UnauthorizedException
from apps.payguard.models import Payment
from apps.shipstream.models import Delivery
from apps.shopcore.models import Order, Product

from .fakes import sign_payment, sign_webhook

pytestmark = pytest.mark.django_db


def _client(user):
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(user)}")
    return client


def _order_payload(product, quantity=1, **extra):
    return {
        'items': [{'product_id': str(product.id), 'quantity': quantity}],
        'delivery_address': {'address': '12 MG Road, Indiranagar', 'city': 'Bengaluru',
                             'state': 'Karnataka', 'pincode': '560038'},
        'customer_details': {'name': 'Asha Rao', 'phone': '9876543210', 'email': 'asha@example.com'},
        **extra,
    }


class TestAuthApi:

    def test_register_returns_token(self, api_client):
        response = api_client.post('/api/auth/register', {
            'mobile': '98765 43210', 'password': 'pass1234', 'first_name': 'Asha', 'email': 'asha@example.com',
        }, format='json')

        assert response.status_code == 201
        body = response.json()
        assert body['success'] is True
        assert body['user']['mobile'] == '9876543210'
        assert read_token(body['token'])['mobile'] == '9876543210'

    def test_register_duplicate_mobile(self, api_client, customer):
        response = api_client.post('/api/auth/register', {'mobile': customer.mobile, 'password': 'pass1234'},
                                   format='json')
        assert response.status_code == 400
        body = response.json()
        assert body == {
            'success': False,
            'message': 'User with this mobile number already exists',
            'code': 'VALIDATION_ERROR',
            'errors': {'mobile': ['User with this mobile number already exists']},
        }

    def test_register_short_password(self, api_client):
        response = api_client.post('/api/auth/register', {'mobile': '9876543210', 'password': 'abc'}, format='json')
        assert response.status_code == 400
        assert response.json()['errors'] == {'password': ['Password must be at least 4 characters long']}

    def test_missing_fields_use_drf_envelope(self, api_client):
        response = api_client.post('/api/auth/login', {}, format='json')
        assert response.status_code == 400
        body = response.json()
        assert body['message'] == 'Validation failed'
        assert set(body['errors']) == {'mobile', 'password'}

    def test_login(self, api_client, customer):
        response = api_client.post('/api/auth/login', {'mobile': '9876543210', 'password': 'secret123'},
                                   format='json')
        assert response.status_code == 200
        assert read_token(response.json()['token'])['uid'] == str(customer.id)

    def test_login_wrong_password(self, api_client, customer):
        response = api_client.post('/api/auth/login', {'mobile': '9876543210', 'password': 'nope'},
                                   format='json')
        assert response.status_code == 401
        assert response.json()['code'] == 'UNAUTHORIZED'

    def test_profile_requires_token(self, api_client):
        response = api_client.get('/api/auth/profile')
        assert response.status_code == 401
        assert response['WWW-Authenticate'] == 'Bearer'
        assert response.json()['success'] is False

    def test_tampered_token(self, api_client, customer):
        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(customer)}x")
        response = api_client.get('/api/auth/profile')
        assert response.status_code == 401
        assert response.json()['code'] == 'AUTHENTICATION_FAILED'

    def test_inactive_user_token(self, customer_client, customer):
        User.objects.filter(pk=customer.pk).update(is_active=False)
        assert customer_client.get('/api/auth/profile').status_code == 401

    def test_expired_token(self, customer, monkeypatch):
        token = issue_token(customer)
        later = time.time() + 8 * 24 * 60 * 60
        monkeypatch.setattr('django.core.signing.time.time', lambda: later)
        with pytest.raises(UnauthorizedException, match="expired"):
            read_token(token)

    def test_profile_update(self, customer_client):
        response = customer_client.put('/api/auth/profile', {
            'last_name': 'Rao-Iyer', 'health_profile': {'goals': ['sleep'], 'age': 34},
        }, format='json')
        assert response.status_code == 200
        assert response.json()['user']['health_profile'] == {'goals': ['sleep'], 'age': 34}
        assert response.json()['user']['full_name'] == 'Asha Rao-Iyer'

    def test_profile_email_clash(self, customer_client, other_customer):
        User.objects.filter(pk=other_customer.pk).update(email='ravi@example.com')
        response = customer_client.put('/api/auth/profile', {'email': 'ravi@example.com'}, format='json')
        assert response.status_code == 400

    def test_change_password(self, customer_client, api_client):
        response = customer_client.put('/api/auth/change-password', {
            'current_password': 'secret123', 'new_password': 'newsecret',
        }, format='json')
        assert response.status_code == 200

        login = api_client.post('/api/auth/login', {'mobile': '9876543210', 'password': 'newsecret'},
                                format='json')
        assert login.status_code == 200

    def test_change_password_wrong_current(self, customer_client):
        response = customer_client.put('/api/auth/change-password', {
            'current_password': 'wrong', 'new_password': 'newsecret',
        }, format='json')
        assert response.status_code == 400
        assert 'current_password' in response.json()['errors']


class TestCatalogApi:

    def test_list_featured_first(self, api_client, whey, ashwagandha):
        response = api_client.get('/api/products/')
        body = response.json()
        assert response.status_code == 200
        assert [p['name'] for p in body['data']] == [whey.name, ashwagandha.name]
        assert body['data'][0]['categories'] == ['proteins', 'fitness']
        assert body['data'][0]['in_stock'] is True
        assert body['pagination'] == {'limit': 50, 'offset': 0, 'count': 2}

    def test_filters(self, api_client, whey, ashwagandha):
        assert [p['sku'] for p in api_client.get('/api/products/?category=herbal').json()['data']] == ['GT-ASHWA']
        assert [p['sku'] for p in api_client.get('/api/products/?search=whey').json()['data']] == ['GT-WHEY']
        assert [p['sku'] for p in api_client.get('/api/products/?featured=true').json()['data']] == ['GT-WHEY']
        assert len(api_client.get('/api/products/?limit=1&offset=1').json()['data']) == 1

    def test_inactive_products_are_hidden(self, api_client, whey, ashwagandha):
        Product.objects.filter(pk=whey.pk).update(is_active=False)
        assert [p['sku'] for p in api_client.get('/api/products/').json()['data']] == ['GT-ASHWA']
        assert api_client.get(f'/api/products/{whey.id}/').status_code == 404

    def test_detail(self, api_client, ashwagandha):
        response = api_client.get(f'/api/products/{ashwagandha.id}/')
        assert response.status_code == 200
        assert response.json()['data']['price'] == '459.00'

    def test_unknown_product(self, api_client, db):
        response = api_client.get('/api/products/1b4e28ba-2fa1-11d2-883f-0016d3cca427/')
        assert response.status_code == 404
        assert response.json()['code'] == 'NOT_FOUND'

    def test_featured_and_categories(self, api_client, whey, ashwagandha):
        assert [p['sku'] for p in api_client.get('/api/products/featured/').json()['data']] == ['GT-WHEY']
        categories = api_client.get('/api/products/categories/').json()['data']
        assert {c['value']: c['count'] for c in categories} == {
            'fitness': 1, 'herbal': 1, 'proteins': 1, 'wellness': 1,
        }
        assert categories[0] == {'value': 'fitness', 'label': 'Fitness', 'count': 1}

    def test_stock_update_is_admin_only(self, api_client, customer_client, admin_client, whey):
        url = f'/api/products/{whey.id}/stock/'
        assert api_client.put(url, {'quantity': 50}, format='json').status_code == 401

        forbidden = customer_client.put(url, {'quantity': 50}, format='json')
        assert forbidden.status_code == 403
        assert forbidden.json()['message'] == 'Admin access required'

        response = admin_client.put(url, {'delta': -4}, format='json')
        assert response.status_code == 200
        assert response.json()['data']['stock_quantity'] == 6

    def test_stock_never_negative(self, admin_client, whey):
        url = f'/api/products/{whey.id}/stock/'
        assert admin_client.put(url, {'delta': -11}, format='json').status_code == 400
        assert admin_client.put(url, {'quantity': -1}, format='json').status_code == 400
        assert admin_client.put(url, {'quantity': 1, 'delta': 1}, format='json').status_code == 400
        assert Product.objects.get(pk=whey.pk).stock_quantity == 10


class TestOrdersApi:

    def test_create_cod_order(self, customer_client, ashwagandha):
        response = customer_client.post('/api/orders/', _order_payload(ashwagandha, 2), format='json')

        assert response.status_code == 201
        data = response.json()['data']
        assert data['status'] == 'processing'
        assert data['total_amount'] == '918.00'
        assert data['items'][0]['unit_price'] == '459.00'
        assert data['can_be_cancelled'] is True
        assert data['can_be_refunded'] is False

    def test_orders_require_login(self, api_client, ashwagandha):
        assert api_client.post('/api/orders/', _order_payload(ashwagandha), format='json').status_code == 401
        assert api_client.get('/api/orders/').status_code == 401

    def test_insufficient_stock_envelope(self, customer_client, ashwagandha):
        response = customer_client.post('/api/orders/', _order_payload(ashwagandha, 9), format='json')
        assert response.status_code == 400
        body = response.json()
        assert body['code'] == 'INSUFFICIENT_STOCK'
        assert body['errors'] == {'product': ashwagandha.name, 'requested': 9, 'available': 5}

    def test_bad_pincode(self, customer_client, ashwagandha):
        payload = _order_payload(ashwagandha)
        payload['delivery_address']['pincode'] = '5600'
        response = customer_client.post('/api/orders/', payload, format='json')
        assert response.status_code == 400
        assert response.json()['errors'] == {'pincode': ['Valid 6-digit pincode is required']}

    def test_list_detail_and_stats(self, customer_client, place_cod_order, whey):
        order = place_cod_order(whey)

        listing = customer_client.get('/api/orders/').json()
        assert [o['order_number'] for o in listing['data']] == [order.order_number]

        detail = customer_client.get(f'/api/orders/{order.order_number}/')
        assert detail.json()['data']['id'] == str(order.id)

        stats = customer_client.get('/api/orders/stats/').json()['data']
        assert stats['total_orders'] == 1
        assert stats['processing_orders'] == 1

    def test_other_customers_order_is_hidden(self, place_cod_order, whey, other_customer):
        order = place_cod_order(whey)
        client = _client(other_customer)
        assert client.get(f'/api/orders/{order.order_number}/').status_code == 404
        assert client.put(f'/api/orders/{order.order_number}/cancel/', {}, format='json').status_code == 404

    def test_cancel(self, customer_client, place_cod_order, ashwagandha):
        order = place_cod_order(ashwagandha, quantity=2)
        response = customer_client.put(f'/api/orders/{order.id}/cancel/', {'reason': 'Changed my mind'},
                                       format='json')
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'cancelled'
        assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 5

    def test_status_update_is_admin_only(self, customer_client, place_cod_order, whey):
        order = place_cod_order(whey)
        response = customer_client.put(f'/api/orders/{order.id}/status/', {'status': 'shipped'}, format='json')
        assert response.status_code == 403

    def test_admin_status_update_and_backwards_move(self, admin_client, shipped_order):
        url = f'/api/orders/{shipped_order.order_number}/status/'
        response = admin_client.put(url, {'status': 'delivered'}, format='json')
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'delivered'

        backwards = admin_client.put(url, {'status': 'processing'}, format='json')
        assert backwards.status_code == 409
        body = backwards.json()
        assert body['code'] == 'INVALID_TRANSITION'
        assert body['errors'] == {'current_status': 'delivered', 'requested_status': 'processing'}

    def test_admin_cannot_set_refunded(self, admin_client, paid_order):
        response = admin_client.put(f'/api/orders/{paid_order.id}/status/', {'status': 'refunded'}, format='json')
        assert response.status_code == 400
        assert Order.objects.get(pk=paid_order.pk).status == 'paid'

class TestPaymentsApi:

    def test_create_payment_order(self, customer_client, ashwagandha):
        response = customer_client.post('/api/payments/create-order/', _order_payload(ashwagandha), format='json')

        assert response.status_code == 201
        data = response.json()['data']
        assert data['razorpay_order_id'] == 'order_test0001'
        assert data['amount'] == 45900
        assert data['key_id'] == 'rzp_test_key'
        assert data['order']['status'] == 'payment_pending'

    def test_gateway_outage_is_502(self, customer_client, ashwagandha, razorpay_api):
        razorpay_api.failing.add('orders')
        response = customer_client.post('/api/payments/create-order/', _order_payload(ashwagandha), format='json')
        assert response.status_code == 502
        assert response.json()['code'] == 'PAYMENT_PROVIDER_ERROR'
        assert not Order.objects.exists()

    def test_verify_and_repeat(self, customer_client, place_online_order, ashwagandha):
        order = place_online_order(ashwagandha)
        payload = {
            'razorpay_order_id': order.provider_order_id,
            'razorpay_payment_id': 'pay_A1',
            'razorpay_signature': sign_payment(order.provider_order_id, 'pay_A1'),
        }

        first = customer_client.post('/api/payments/verify-payment/', payload, format='json')
        second = customer_client.post('/api/payments/verify-payment/', payload, format='json')

        assert first.status_code == second.status_code == 200
        assert first.json()['message'] == 'Payment verified successfully'
        assert second.json()['message'] == 'Payment already verified'
        assert first.json()['data']['status'] == 'paid'
        assert Product.objects.get(pk=ashwagandha.pk).stock_quantity == 4

    def test_verify_tampered(self, customer_client, place_online_order, ashwagandha):
        order = place_online_order(ashwagandha)
        response = customer_client.post('/api/payments/verify-payment/', {
            'razorpay_order_id': order.provider_order_id,
            'razorpay_payment_id': 'pay_A1',
            'razorpay_signature': 'f' * 64,
        }, format='json')

        assert response.status_code == 400
        assert response.json()['code'] == 'PAYMENT_VERIFICATION_FAILED'
        assert Order.objects.get(pk=order.pk).status == 'payment_failed'

    def test_refund(self, customer_client, paid_order):
        response = customer_client.post('/api/payments/refund/', {'order_id': paid_order.order_number},
                                        format='json')
        assert response.status_code == 200
        data = response.json()['data']
        assert data['order']['status'] == 'refunded'
        assert data['payment']['status'] == 'refunded'

    def test_refund_not_allowed(self, customer_client, place_cod_order, whey):
        order = place_cod_order(whey)
        response = customer_client.post('/api/payments/refund/', {'order_id': order.order_number}, format='json')
        assert response.status_code == 409

    def test_history_stats_and_order_payments(self, customer_client, paid_order):
        history = customer_client.get('/api/payments/history/').json()
        assert [p['razorpay_payment_id'] for p in history['data']] == ['pay_test0001']
        assert history['data'][0]['order_number'] == paid_order.order_number

        stats = customer_client.get('/api/payments/stats/').json()['data']
        assert stats['successful_payments'] == 1

        per_order = customer_client.get(f'/api/payments/order/{paid_order.order_number}/').json()['data']
        assert per_order['order_number'] == paid_order.order_number
        assert len(per_order['payments']) == 1


class TestWebhooksApi:

    def _post_razorpay(self, client, body, signature):
        return client.post('/api/webhooks/razorpay/', data=body, content_type='application/json',
                           HTTP_X_RAZORPAY_SIGNATURE=signature, HTTP_X_RAZORPAY_EVENT_ID='evt_1')

    def test_razorpay_capture(self, api_client, place_online_order, ashwagandha):
        order = place_online_order(ashwagandha)
        body = json.dumps({'event': 'payment.captured', 'payload': {
            'payment': {'entity': {'id': 'pay_W1', 'order_id': order.provider_order_id}},
        }}).encode()

        response = self._post_razorpay(api_client, body, sign_webhook(body))

        assert response.status_code == 200
        assert response.json() == {'success': True, 'event': 'payment.captured', 'handled': True}
        assert Order.objects.get(pk=order.pk).status == 'paid'

    def test_razorpay_bad_signature(self, api_client, place_online_order, ashwagandha):
        order = place_online_order(ashwagandha)
        body = json.dumps({'event': 'payment.captured', 'payload': {
            'payment': {'entity': {'id': 'pay_W1', 'order_id': order.provider_order_id}},
        }}).encode()

        response = self._post_razorpay(api_client, body, sign_webhook(body, secret='guess'))

        assert response.status_code == 400
        assert Order.objects.get(pk=order.pk).status == 'payment_pending'

    def test_razorpay_processing_error_is_acknowledged(self, api_client):
        body = json.dumps({'event': 'refund.created', 'payload': {
            'refund': {'entity': {'id': 'rfnd_1', 'payment_id': 'pay_unknown'}},
        }}).encode()
        response = self._post_razorpay(api_client, body, sign_webhook(body))
        assert response.status_code == 200
        assert response.json()['handled'] is False

    def test_shiprocket_webhook(self, api_client, shipped_order):
        response = api_client.post('/api/webhooks/shiprocket/', {
            'awb': 'AWB55550001', 'current_status': 'OUT FOR DELIVERY',
        }, format='json', HTTP_X_API_KEY='ship-hook-token')

        assert response.status_code == 200
        assert response.json() == {'success': True, 'handled': True, 'status': 'out_for_delivery'}

    @pytest.mark.parametrize('extra', [
        {'etd': '2024-13-45 10:00:00'},
        {'etd': 1700000000},
        {'etd': ['2024-06-01']},
        {'scans': {'location': 'Delhi'}},
        {'scans': ['in transit']},
    ])
    def test_shiprocket_webhook_tolerates_odd_fields(self, api_client, shipped_order, extra):
        response = api_client.post('/api/webhooks/shiprocket/', {
            'awb': 'AWB55550001', 'current_status': 'DELIVERED', **extra,
        }, format='json', HTTP_X_API_KEY='ship-hook-token')

        assert response.status_code == 200
        assert response.json()['handled'] is True
        assert Order.objects.get(pk=shipped_order.pk).status == 'delivered'
        assert Delivery.objects.get(order=shipped_order).estimated_delivery is None

    def test_shiprocket_webhook_processing_error_is_acknowledged(self, api_client, shipped_order, monkeypatch):
        from apps.shipstream.services import ShippingService

        def explode(self, *args, **kwargs):
            raise RuntimeError('db went away')

        monkeypatch.setattr(ShippingService, 'apply_tracking_update', explode)
        response = api_client.post('/api/webhooks/shiprocket/', {
            'awb': 'AWB55550001', 'current_status': 'DELIVERED',
        }, format='json', HTTP_X_API_KEY='ship-hook-token')

        assert response.status_code == 200
        assert response.json() == {'success': True, 'handled': False, 'error': 'processing error'}
        assert Order.objects.get(pk=shipped_order.pk).status == 'shipped'

    def test_shiprocket_webhook_bad_token(self, api_client, shipped_order):
        response = api_client.post('/api/webhooks/shiprocket/', {
            'awb': 'AWB55550001', 'current_status': 'DELIVERED',
        }, format='json', HTTP_X_API_KEY='nope')
        assert response.status_code == 401
        assert Order.objects.get(pk=shipped_order.pk).status == 'shipped'

    def test_shiprocket_webhook_invalid_json(self, api_client):
        response = api_client.post('/api/webhooks/shiprocket/', data=b'{awb', content_type='application/json',
                                   HTTP_X_API_KEY='ship-hook-token')
        assert response.status_code == 400


class TestTrackingApi:

    def test_public_tracking(self, api_client, shipped_order):
        response = api_client.get(f'/api/tracking/order/{shipped_order.order_number}/')

        assert response.status_code == 200
        data = response.json()['data']
        assert data['order_status'] == 'shipped'
        assert data['delivery']['tracking_id'] == 'AWB55550001'
        assert data['live_tracking']['track_status'] == 1
        assert [s['status'] for s in data['timeline']] == ['created', 'processing', 'shipped']

    def test_tracking_unknown_order(self, api_client, db):
        assert api_client.get('/api/tracking/order/ORD-NOPE/').status_code == 404

    def test_delivery_detail_is_owner_only(self, customer_client, shipped_order, other_customer):
        delivery = Delivery.objects.get(order=shipped_order)
        assert customer_client.get(f'/api/tracking/delivery/{delivery.id}/').status_code == 200
        assert _client(other_customer).get(f'/api/tracking/delivery/AWB55550001/').status_code == 404

    def test_serviceability(self, api_client):
        response = api_client.post('/api/tracking/check-serviceability/', {'delivery_postcode': '560038'},
                                   format='json')
        assert response.status_code == 200

        bad = api_client.post('/api/tracking/check-serviceability/', {'delivery_postcode': '5600'}, format='json')
        assert bad.status_code == 400

    def test_manual_update_is_admin_only(self, customer_client, admin_client, shipped_order):
        payload = {'order_id': shipped_order.order_number, 'status': 'in_transit', 'location': 'Hosur'}
        assert customer_client.post('/api/tracking/manual-update/', payload, format='json').status_code == 403

        response = admin_client.post('/api/tracking/manual-update/', payload, format='json')
        assert response.status_code == 200
        assert response.json()['data']['current_location'] == 'Hosur'

    def test_courier_update_needs_key(self, api_client, shipped_order):
        payload = {'tracking_id': 'AWB55550001', 'status': 'delivered'}
        assert api_client.post('/api/tracking/webhook/update/', payload, format='json').status_code == 401

        response = api_client.post('/api/tracking/webhook/update/', payload, format='json',
                                   HTTP_X_API_KEY='ship-hook-token')
        assert response.status_code == 200
        assert Order.objects.get(pk=shipped_order.pk).status == 'delivered'

    def test_stats_cancel_and_pickups_are_admin_only(self, customer_client, admin_client, shipped_order,
                                                    shiprocket_api):
        assert customer_client.get('/api/tracking/stats/').status_code == 403
        assert admin_client.get('/api/tracking/stats/?timeframe=30d').json()['data']['total_shipments'] == 1
        assert admin_client.get('/api/tracking/stats/?timeframe=1y').status_code == 400

        pickups = admin_client.get('/api/tracking/pickup-locations/')
        assert pickups.json()['data']['data']['shipping_address'][0]['pickup_location'] == 'Primary'

        cancelled = admin_client.post('/api/tracking/cancel-shipment/', {'order_id': shipped_order.order_number},
                                      format='json')
        assert cancelled.json()['data']['status'] == 'cancelled'
        assert shiprocket_api.cancelled == ['AWB55550001']


def test_health(api_client, db):
    response = api_client.get('/api/health/')
    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'healthy'
    assert body['providers']['razorpay'] == 'configured'
    assert body['providers']['sms'] == 'disabled'


def test_unhandled_errors_use_envelope(customer_client, monkeypatch):
    from apps.shopcore.services import OrderWorkflow

    def explode(user):
        raise RuntimeError('database on fire')

    monkeypatch.setattr(OrderWorkflow, 'order_stats', staticmethod(explode))
    response = customer_client.get('/api/orders/stats/')
    assert response.status_code == 500
    assert response.json() == {
        'success': False, 'message': 'An unexpected error occurred', 'code': 'INTERNAL_ERROR', 'errors': None,
    }


def test_decimal_totals_are_strings(customer_client, paid_order):
    data = customer_client.get(f'/api/orders/{paid_order.id}/').json()['data']
    assert Decimal(data['total_amount']) == Decimal('918.00')
    assert Payment.objects.get().amount == Decimal('918.00')
