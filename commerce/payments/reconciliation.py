"""
Réconciliation des paiements Stripe (webhook checkout.session.completed).

Ordre des opérations:
  1) réserve event.id (registre processed_events, état 'processing') ; doublon déjà 'done' => aucune écriture,
     traitement concurrent récent => 409 (Stripe relivre), réservation abandonnée => reprise
  2) commande pending -> confirmed (compare-and-set, idempotent)
  3) paiement -> success, transaction_id = payment_intent
  4) au premier passage du paiement en succès: panier actif vidé (échec journalisé, sans retour arrière de 2-3)
  5) e-mail de confirmation + invoice.generate (best-effort)
Après 2-3 la réservation passe 'done'. Un échec en 2 ou 3 libère la réservation et remonte
l'erreur: le webhook répond 500 et Stripe relivre l'événement.
"""
import logging
from typing import Any, Dict

from commerce.errors import ConflictError, ValidationError
from commerce.notifications import topics
from commerce.orders.models import PaymentStatus
from commerce.payments.repository import DUPLICATE, IN_PROGRESS

logger = logging.getLogger(__name__)

REQUIRED_METADATA = ("orderId", "userId", "paymentId")


# module commerce.payments.reconciliation
class ReconciliationHandler:
    def __init__(self, gateway, order_service, payments, processed_events, cart, dispatcher):
        self.gateway = gateway
        self.orders = order_service
        self.payments = payments
        self.processed_events = processed_events
        self.cart = cart
        self.dispatcher = dispatcher

    def handle_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        completed = self.gateway.parse_event(event)
        if completed is None:
            logger.info("payments.webhook ignored type=%s", (event or {}).get("type"))
            return {"status": "ignored"}

        meta = completed.metadata
        missing = [k for k in REQUIRED_METADATA if not meta.get(k)]
        if missing:
            logger.error("payments.webhook metadata missing=%s event_id=%s", missing, completed.event_id)
            raise ValidationError(f"Métadonnées manquantes: {', '.join(missing)}")
        order_id, user_id, payment_id = meta["orderId"], meta["userId"], meta["paymentId"]

        event_key = completed.event_id or completed.session_id
        claim = self.processed_events.claim(event_key, "checkout.session.completed")
        if claim == DUPLICATE:
            logger.info("payments.webhook duplicate event_id=%s order_id=%s", event_key, order_id)
            return {"status": "duplicate", "orderId": order_id}
        if claim == IN_PROGRESS:
            # Réponse non 2xx: Stripe relivrera après la fin (ou l'expiration) du traitement en cours
            logger.info("payments.webhook in progress event_id=%s order_id=%s", event_key, order_id)
            raise ConflictError("Événement en cours de traitement")

        try:
            payment = self.payments.get(payment_id)
            if not payment or payment.get("order_id") != order_id:
                raise ValidationError("Paiement inconnu pour cette commande")
            # Effets (panier, e-mail, facture) déclenchés une seule fois: au passage du paiement en succès
            first_success = payment.get("status") != PaymentStatus.SUCCESS.value
            order, outcome = self.orders.confirm_payment(order_id)
            self.payments.update(payment_id, {
                "status": PaymentStatus.SUCCESS.value,
                "transaction_id": completed.payment_intent or completed.session_id,
            })
            self.processed_events.complete(event_key)
        except Exception:
            logger.exception("payments.webhook ledger update failed order_id=%s event_id=%s", order_id, event_key)
            self.processed_events.release(event_key)
            raise

        if outcome == "canceled":
            # Paiement encaissé sur une commande annulée (ex: balayage passé avant le webhook)
            logger.error("payments.webhook paid canceled order order_id=%s payment_id=%s", order_id, payment_id)
            self.dispatcher.emit(topics.ORDER_REFUND_REQUIRED, {
                "orderId": order_id,
                "buyerId": user_id,
                "paymentId": payment_id,
                "paymentIntent": completed.payment_intent,
                "reason": "paid_after_cancellation",
            }, key=order_id)
            return {"status": "ok", "orderId": order_id, "outcome": outcome}

        if first_success:
            try:
                self.cart.checkout(user_id)
            except Exception:
                logger.exception("payments.webhook cart clear failed user_id=%s order_id=%s", user_id, order_id)
            self.orders.notify_payment_confirmed(order, completed.customer_email)
        logger.info("payments.webhook reconciled order_id=%s payment_id=%s outcome=%s", order_id, payment_id, outcome)
        return {"status": "ok", "orderId": order_id, "outcome": outcome}
