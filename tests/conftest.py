import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bizcard_svc.app import app
from bizcard_svc.auth import AuthError, AuthenticatedUser, get_auth_client
from bizcard_svc.config import Settings, get_settings
from bizcard_svc.models.base import Base, get_session_factory
from bizcard_svc.models.subscription import SubscriptionRecord
from bizcard_svc.stripe_integration import StripeIntegration, get_stripe_integration

WEBHOOK_SECRET = 'whsec_test_secret'
PRICE_ID = 'price_test_pro'
APP_URL = 'https://cards.example.com'


def make_settings(**overrides) -> Settings:
    values = dict(
        stripe_secret_key='sk_test_dummy',
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_id=PRICE_ID,
        app_url=APP_URL,
        supabase_url='https://project.supabase.co',
        supabase_anon_key='anon_key',
        database_url='sqlite://',
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the same way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}"
    signature = hmac.new(secret.encode('utf-8'), signed_payload.encode('utf-8'), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_payload(
    user_id='user_1',
    customer='cus_1',
    subscription='sub_1',
    event_id='evt_1',
) -> str:
    session = {'id': 'cs_test_1', 'object': 'checkout.session', 'mode': 'subscription'}
    if user_id is not None:
        session['client_reference_id'] = user_id
    if customer is not None:
        session['customer'] = customer
    if subscription is not None:
        session['subscription'] = subscription
    return json.dumps({
        'id': event_id,
        'object': 'event',
        'type': 'checkout.session.completed',
        'created': 1700000000,
        'data': {'object': session},
    })


class FakeStripeIntegration(StripeIntegration):
    """Records calls instead of talking to Stripe. Signature checks stay real."""

    def __init__(self):
        super().__init__(api_key='sk_test_dummy', max_retries=1, retry_delay=0)
        self.checkout_calls = []
        self.retrieve_calls = []
        self.subscriptions = {}
        self.checkout_url = 'https://checkout.stripe.com/c/pay/cs_test_1'
        self.retrieve_error = None

    def create_checkout_session(self, user_id, email, price_id, success_url, cancel_url):
        self.checkout_calls.append({
            'user_id': user_id,
            'email': email,
            'price_id': price_id,
            'success_url': success_url,
            'cancel_url': cancel_url,
        })
        return {'id': 'cs_test_1', 'url': self.checkout_url}

    def retrieve_subscription(self, subscription_id):
        self.retrieve_calls.append(subscription_id)
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return self.subscriptions.get(
            subscription_id,
            {'id': subscription_id, 'status': 'active', 'current_period_end': 1700000000},
        )


class FakeAuthClient:
    def __init__(self, user=None, error=None):
        self.user = user
        self.error = error
        self.tokens = []

    def get_user(self, access_token):
        self.tokens.append(access_token)
        if self.error is not None:
            raise self.error
        if not access_token or self.user is None:
            raise AuthError()
        return self.user


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def fake_stripe():
    return FakeStripeIntegration()


@pytest.fixture
def fake_auth():
    return FakeAuthClient(user=AuthenticatedUser(id='user_1', email='a@b.com'))


@pytest.fixture
def client(settings, fake_stripe, fake_auth, session_factory):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_stripe_integration] = lambda: fake_stripe
    app.dependency_overrides[get_auth_client] = lambda: fake_auth
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def count_records(session_factory):
    def count():
        with session_factory() as db:
            return db.query(SubscriptionRecord).count()
    return count


@pytest.fixture
def fetch_record(session_factory):
    def fetch(user_id):
        with session_factory() as db:
            record = db.query(SubscriptionRecord).filter(SubscriptionRecord.user_id == user_id).first()
            if record is not None:
                db.expunge(record)
            return record
    return fetch
