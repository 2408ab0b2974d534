import os

# Avant tout import de commerce.config: pas de tâche de fond ni de pool de threads en tests
os.environ.setdefault("PAYMENT_SWEEP_ENABLED", "0")
os.environ.setdefault("NOTIFICATIONS_ASYNC", "0")
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from commerce.app_setup.factory import create_app
from commerce.cart.cache import CartCache
from commerce.cart.service import CartService
from commerce.dependencies import Services
from commerce.notifications.dispatcher import NotificationDispatcher
from commerce.orders.service import AddressService, OrderService
from commerce.payments.reconciliation import ReconciliationHandler
from commerce.payments.sweep import PendingPaymentSweeper
from commerce.utils.security import get_current_user

from fakes import (
    FakeAddressRepository,
    FakeCartRepository,
    FakeGateway,
    FakeOrderRepository,
    FakePaymentRepository,
    FakeProcessedEventRepository,
    FakeReturnRequestRepository,
    RecordingMailer,
    RecordingPublisher,
)

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def world():
    """Graphe de services complet branché sur des doubles en mémoire."""
    publisher = RecordingPublisher()
    mailer = RecordingMailer()
    dispatcher = NotificationDispatcher(publisher=publisher, mailer=mailer)
    orders_repo = FakeOrderRepository()
    addresses = FakeAddressRepository()
    returns = FakeReturnRequestRepository()
    payments = FakePaymentRepository()
    processed = FakeProcessedEventRepository()
    cart_repo = FakeCartRepository()
    redis_client = fakeredis.FakeRedis(decode_responses=True)
    gateway = FakeGateway()

    cart = CartService(cart_repo, CartCache(redis_client), dispatcher)
    order_service = OrderService(
        orders=orders_repo,
        addresses=addresses,
        returns=returns,
        payments=payments,
        cart=cart,
        gateway=gateway,
        dispatcher=dispatcher,
        shipping_days=5,
        clock=lambda: FIXED_NOW,
    )
    reconciliation = ReconciliationHandler(gateway, order_service, payments, processed, cart, dispatcher)
    sweeper = PendingPaymentSweeper(payments, order_service, dispatcher, ttl_minutes=90, clock=lambda: FIXED_NOW)
    services = Services(
        orders=order_service,
        addresses=AddressService(addresses),
        cart=cart,
        reconciliation=reconciliation,
        sweeper=sweeper,
        dispatcher=dispatcher,
        gateway=gateway,
    )
    return SimpleNamespace(
        publisher=publisher,
        mailer=mailer,
        dispatcher=dispatcher,
        orders_repo=orders_repo,
        addresses=addresses,
        returns=returns,
        payments=payments,
        processed=processed,
        cart_repo=cart_repo,
        redis=redis_client,
        gateway=gateway,
        cart=cart,
        order_service=order_service,
        reconciliation=reconciliation,
        sweeper=sweeper,
        services=services,
    )


@pytest.fixture
def current_user() -> Dict[str, Any]:
    """Utilisateur authentifié simulé; les tests peuvent changer role/vendor_id."""
    return {
        "id": "test-user",
        "email": "test@example.com",
        "role": "buyer",
        "vendor_id": None,
        "metadata": {"full_name": "Test User"},
        "token": "fake-token",
    }


@pytest.fixture
def app(world, current_user):
    fastapi_app = create_app()
    fastapi_app.state.services = world.services
    fastapi_app.dependency_overrides[get_current_user] = lambda: current_user
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c
