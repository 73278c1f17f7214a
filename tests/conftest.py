"""
Pytest configuration and fixtures for Fundi backend tests
"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest import mock

import jwt
import pytest

from auth import Actor
from models import db, Job
from paystack_service import GatewayResponse, PaystackClient
from server import create_app


@pytest.fixture
def app():
    """Create a fresh application and in-memory database for each test"""
    app = create_app('testing')

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------
@pytest.fixture
def customer_id():
    return str(uuid.uuid4())


@pytest.fixture
def provider_id():
    return str(uuid.uuid4())


@pytest.fixture
def stranger_id():
    return str(uuid.uuid4())


def make_token(app, user_id, email=None, expires_in=3600):
    return jwt.encode({
        'sub': user_id,
        'email': email,
        'role': 'authenticated',
        'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }, app.config['JWT_SECRET'], algorithm='HS256')


def bearer(token):
    return {
        'Authorization': f'Bearer {token}',
        'Content-Type': 'application/json',
    }


@pytest.fixture
def auth_headers(app):
    """Factory for auth headers with a custom lifetime"""
    def _headers(user_id, email=None, expires_in=3600):
        return bearer(make_token(app, user_id, email=email, expires_in=expires_in))
    return _headers


@pytest.fixture
def customer_headers(app, customer_id):
    """Auth headers for the job's customer"""
    return bearer(make_token(app, customer_id, email='customer@example.com'))


@pytest.fixture
def provider_headers(app, provider_id):
    """Auth headers for the job's provider"""
    return bearer(make_token(app, provider_id, email='fundi@example.com'))


@pytest.fixture
def stranger_headers(app, stranger_id):
    """Auth headers for a user who is not a party to any test job"""
    return bearer(make_token(app, stranger_id))


@pytest.fixture
def customer(customer_id):
    return Actor(id=customer_id, email='customer@example.com')


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------
@pytest.fixture
def make_job(app, customer_id, provider_id):
    """Factory for jobs between the test customer and provider"""
    def _make(**overrides):
        fields = {
            'customer_id': customer_id,
            'provider_id': provider_id,
            'status': 'pending',
            'title': 'Fix leaking kitchen sink',
            'address': 'Kilimani, Nairobi',
        }
        fields.update(overrides)
        job = Job(**fields)
        db.session.add(job)
        db.session.commit()
        return job
    return _make


@pytest.fixture
def job(make_job):
    """A pending job with no quote"""
    return make_job()


@pytest.fixture
def quoted_job(make_job):
    """A confirmed job whose 1000.00 quote the customer accepted"""
    return make_job(
        status='confirmed',
        quote_labor=800.0,
        quote_materials=200.0,
        quote_total=1000.0,
        quote_locked=True,
        quote_accepted=True,
        quote_submitted_at=datetime.now(timezone.utc),
        quote_accepted_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def started_job(make_job):
    """A job in progress after the start code was used"""
    now = datetime.now(timezone.utc)
    return make_job(
        status='in_progress',
        quote_labor=800.0,
        quote_materials=200.0,
        quote_total=1000.0,
        quote_locked=True,
        quote_accepted=True,
        start_code_hash='0' * 64,
        start_code_used=True,
        start_code_used_at=now,
        job_start_time=now,
    )


@pytest.fixture
def payable_job(make_job):
    """A finished job awaiting payment for its 1000.00 quote"""
    now = datetime.now(timezone.utc)
    return make_job(
        status='awaiting_payment',
        quote_labor=800.0,
        quote_materials=200.0,
        quote_total=1000.0,
        quote_locked=True,
        quote_accepted=True,
        start_code_hash='0' * 64,
        start_code_used=True,
        end_code_hash='1' * 64,
        end_code_used=True,
        job_start_time=now - timedelta(hours=2),
        job_end_time=now,
    )


# ---------------------------------------------------------------------------
# Paystack
# ---------------------------------------------------------------------------
@pytest.fixture
def paystack(app):
    """Autospec'd Paystack client installed on the app; never touches the network"""
    client = mock.create_autospec(PaystackClient, instance=True)
    client.configured = True

    def _initialize(payload, idempotency_key=None):
        return GatewayResponse(200, 'Authorization URL created', {
            'authorization_url': f"https://checkout.paystack.com/{payload['reference']}",
            'access_code': 'ac_test_123',
            'reference': payload['reference'],
        })

    def _charge(payload, idempotency_key=None):
        return GatewayResponse(200, 'Charge attempted', {
            'reference': payload['reference'],
            'status': 'pay_offline',
            'display_text': 'Please complete authorization process on your mobile phone',
            'channel': 'mobile_money',
            'id': 4099260516,
        })

    client.initialize_transaction.side_effect = _initialize
    client.charge.side_effect = _charge
    client.create_subaccount.return_value = GatewayResponse(
        201, 'Subaccount created', {'subaccount_code': 'ACCT_test123'}
    )
    client.create_split.return_value = GatewayResponse(
        200, 'Split created', {'split_code': 'SPL_test123', 'name': 'Fundi split'}
    )
    client.list_splits.return_value = GatewayResponse(200, 'Split retrieved', [])

    app.extensions['paystack'] = client
    return client
