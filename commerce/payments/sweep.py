"""
Balayage des paiements en attente expirés.

Une session Checkout abandonnée ne produit jamais de webhook de succès: la tentative
resterait 'pending' indéfiniment. Au-delà de PAYMENT_PENDING_TTL_MINUTES (supérieur à
l'expiration de la session Stripe), la tentative passe en 'failed' et la commande encore
'pending' est annulée.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from commerce import config
from commerce.errors import CommerceError
from commerce.notifications import topics
from commerce.orders.models import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingPaymentSweeper:
    def __init__(
        self,
        payments,
        order_service,
        dispatcher,
        ttl_minutes: int = config.PAYMENT_PENDING_TTL_MINUTES,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.payments = payments
        self.orders = order_service
        self.dispatcher = dispatcher
        self.ttl_minutes = ttl_minutes
        self.clock = clock

    def sweep_once(self) -> Dict[str, int]:
        cutoff = (self.clock() - timedelta(minutes=self.ttl_minutes)).isoformat()
        stats = {"payments_failed": 0, "orders_canceled": 0}
        for payment in self.payments.list_stale_pending(cutoff):
            if not self.payments.fail_if_pending(payment["id"]):
                # Confirmée par le webhook depuis la lecture
                logger.info("payments.sweep payment no longer pending payment_id=%s", payment["id"])
                continue
            stats["payments_failed"] += 1
            order_id = payment.get("order_id")
            if not order_id:
                continue

            canceled = {"value": False}

            def decide(order):
                if order.get("status") != OrderStatus.PENDING.value:
                    return None
                canceled["value"] = True
                return {"status": OrderStatus.CANCELED.value, "payment_status": PaymentStatus.FAILED.value}

            try:
                self.orders.mutate(order_id, decide)
            except CommerceError as e:
                logger.warning("payments.sweep order skipped order_id=%s reason=%s", order_id, e.detail)
                continue
            if canceled["value"]:
                stats["orders_canceled"] += 1
                self.dispatcher.emit(topics.ORDER_CANCELLED, {
                    "orderId": order_id,
                    "buyerId": payment.get("user_id"),
                    "reason": "payment_expired",
                }, key=order_id)
        if stats["payments_failed"]:
            logger.info("payments.sweep cutoff=%s %s", cutoff, stats)
        return stats

    async def run_forever(self, interval_seconds: int = config.PAYMENT_SWEEP_INTERVAL_SECONDS) -> None:
        """Boucle lancée par le lifespan; les accès Supabase (synchrones) passent par un thread."""
        while True:
            try:
                await asyncio.to_thread(self.sweep_once)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("payments.sweep iteration failed")
            await asyncio.sleep(interval_seconds)
