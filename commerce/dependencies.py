"""
Assemblage des services (repositories Supabase, Stripe, Redis, Kafka, SMTP).
- build_services(): construit le graphe une fois (appelé par le lifespan)
- get_*: dépendances FastAPI lisant app.state.services (surchargées dans les tests)
"""
from typing import Optional

from fastapi import Request

from commerce import config
from commerce.cart.cache import CartCache
from commerce.cart.repository import CartRepository
from commerce.cart.service import CartService
from commerce.infra.kafka_producer import KafkaEventPublisher
from commerce.infra.mailer import SmtpMailer
from commerce.infra.redis_client import get_redis
from commerce.notifications.dispatcher import NotificationDispatcher
from commerce.orders.repository import AddressRepository, OrderRepository, ReturnRequestRepository
from commerce.orders.service import AddressService, OrderService
from commerce.payments import (
    PaymentRepository,
    PendingPaymentSweeper,
    ProcessedEventRepository,
    ReconciliationHandler,
    StripeGateway,
)


class Services:
    def __init__(self, orders, addresses, cart, reconciliation, sweeper, dispatcher, gateway):
        self.orders = orders
        self.addresses = addresses
        self.cart = cart
        self.reconciliation = reconciliation
        self.sweeper = sweeper
        self.dispatcher = dispatcher
        self.gateway = gateway


def build_dispatcher() -> NotificationDispatcher:
    publisher = KafkaEventPublisher() if config.KAFKA_BOOTSTRAP_SERVERS else None
    mailer = SmtpMailer() if config.SMTP_HOST else None
    if config.NOTIFICATIONS_ASYNC:
        return NotificationDispatcher.background(publisher=publisher, mailer=mailer)
    return NotificationDispatcher(publisher=publisher, mailer=mailer)


def build_services(
    dispatcher: Optional[NotificationDispatcher] = None,
    gateway: Optional[StripeGateway] = None,
    redis_client=None,
) -> Services:
    dispatcher = dispatcher or build_dispatcher()
    gateway = gateway or StripeGateway()

    cart = CartService(CartRepository(), CartCache(redis_client or get_redis()), dispatcher)
    addresses = AddressRepository()
    payments = PaymentRepository()
    orders = OrderService(
        orders=OrderRepository(),
        addresses=addresses,
        returns=ReturnRequestRepository(),
        payments=payments,
        cart=cart,
        gateway=gateway,
        dispatcher=dispatcher,
    )
    reconciliation = ReconciliationHandler(
        gateway=gateway,
        order_service=orders,
        payments=payments,
        processed_events=ProcessedEventRepository(),
        cart=cart,
        dispatcher=dispatcher,
    )
    sweeper = PendingPaymentSweeper(payments, orders, dispatcher)
    return Services(
        orders=orders,
        addresses=AddressService(addresses),
        cart=cart,
        reconciliation=reconciliation,
        sweeper=sweeper,
        dispatcher=dispatcher,
        gateway=gateway,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_order_service(request: Request) -> OrderService:
    return get_services(request).orders


def get_address_service(request: Request) -> AddressService:
    return get_services(request).addresses


def get_cart_service(request: Request) -> CartService:
    return get_services(request).cart


def get_reconciliation_handler(request: Request) -> ReconciliationHandler:
    return get_services(request).reconciliation


def get_gateway(request: Request) -> StripeGateway:
    return get_services(request).gateway
