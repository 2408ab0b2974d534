"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
- create_checkout_session: session Checkout pour une commande + tentative de paiement
- verify_webhook_signature: vérifie Stripe-Signature sur le corps brut
- parse_event: ne retient que checkout.session.completed
"""
import json
import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe
from pydantic import BaseModel, Field

from commerce import config
from commerce.errors import ExternalServiceError, SecurityError
from commerce.payments.metadata import build_metadata, extract_metadata

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
# Fenêtre de fraîcheur de l'horodatage Stripe-Signature (rejeu refusé au-delà)
WEBHOOK_TOLERANCE_SECONDS = stripe.Webhook.DEFAULT_TOLERANCE


class CheckoutCompleted(BaseModel):
    """Vue normalisée d'un événement checkout.session.completed."""
    event_id: str
    session_id: str
    payment_intent: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def to_minor_units(amount) -> int:
    """Montant décimal -> centimes (arrondi bancaire classique au demi supérieur)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_line_items(items: List[Dict[str, Any]], currency: str) -> List[Dict[str, Any]]:
    return [
        {
            "quantity": int(it["quantity"]),
            "price_data": {
                "currency": currency,
                "unit_amount": to_minor_units(it.get("unit_price") or it.get("price") or 0),
                "product_data": {"name": f"Produit {it.get('product_id')}"},
            },
        }
        for it in items
    ]


# module commerce.payments.gateway
class StripeGateway:
    def __init__(
        self,
        api_key: str = config.STRIPE_SECRET_KEY,
        webhook_secret: str = config.STRIPE_WEBHOOK_SECRET,
        frontend_url: str = config.FRONTEND_URL,
        currency: str = config.CHECKOUT_CURRENCY,
        session_ttl_minutes: int = config.CHECKOUT_SESSION_TTL_MINUTES,
        client=stripe,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.currency = currency
        self.session_ttl_minutes = session_ttl_minutes
        self.stripe = client

    def _require_stripe(self):
        """Configure stripe.api_key; sans clé, les appels Stripe échouent côté SDK."""
        if self.api_key:
            self.stripe.api_key = self.api_key
        return self.stripe

    def create_checkout_session(
        self,
        order: Dict[str, Any],
        payment: Dict[str, Any],
        items: List[Dict[str, Any]],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Crée une session Stripe Checkout (mode payment).
        Retour: {"id": "cs_...", "url": "https://checkout.stripe.com/..."}
        Erreurs: ExternalServiceError si Stripe refuse ou est injoignable.
        """
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": to_line_items(items, self.currency),
            "success_url": f"{self.frontend_url}{config.CHECKOUT_SUCCESS_PATH}",
            "cancel_url": f"{self.frontend_url}{config.CHECKOUT_CANCEL_PATH}",
            "client_reference_id": str(order["id"]),
            "expires_at": int(time.time()) + self.session_ttl_minutes * 60,
            "metadata": build_metadata(order, payment, items),
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = self._require_stripe().checkout.Session.create(
                **params,
                idempotency_key=f"checkout-{payment['id']}",
            )
        except Exception as e:
            logger.exception("payments.gateway.create_checkout_session failed order_id=%s", order.get("id"))
            raise ExternalServiceError(f"Création de la session de paiement impossible: {e}")
        session_id = session["id"] if "id" in session else getattr(session, "id", None)
        url = session["url"] if "url" in session else getattr(session, "url", None)
        if not session_id or not url:
            raise ExternalServiceError("Session de paiement invalide")
        return {"id": session_id, "url": url}

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], secret: Optional[str] = None) -> Dict[str, Any]:
        """
        Vérifie l'en-tête Stripe-Signature sur le corps brut (jamais sur un JSON re-sérialisé)
        et retourne l'événement décodé (dict).
        """
        secret = secret or self.webhook_secret
        if not secret:
            logger.error("payments.gateway.verify_webhook_signature STRIPE_WEBHOOK_SECRET manquant")
            raise SecurityError("invalid signature")
        if not signature:
            raise SecurityError("invalid signature")
        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, (bytes, bytearray)) else str(raw_body)
            self.stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance=WEBHOOK_TOLERANCE_SECONDS)
            event = json.loads(payload)
        except Exception:
            logger.warning("payments.gateway.verify_webhook_signature rejected")
            raise SecurityError("invalid signature")
        if not isinstance(event, dict):
            raise SecurityError("invalid signature")
        return event

    @staticmethod
    def parse_event(event: Dict[str, Any]) -> Optional[CheckoutCompleted]:
        """checkout.session.completed -> CheckoutCompleted ; tout autre type -> None (ignoré)."""
        if (event or {}).get("type") != CHECKOUT_COMPLETED:
            return None
        session = ((event.get("data") or {}).get("object")) or {}
        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        return CheckoutCompleted(
            event_id=str(event.get("id") or ""),
            session_id=str(session.get("id") or ""),
            payment_intent=payment_intent,
            payment_status=session.get("payment_status"),
            amount_total=session.get("amount_total"),
            customer_email=(session.get("customer_details") or {}).get("email") or session.get("customer_email"),
            metadata=extract_metadata(event),
        )
