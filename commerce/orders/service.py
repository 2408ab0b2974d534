"""Couche service de la feature Commandes.
Rôles:
- Placer une commande (total recalculé côté serveur, snapshot d'adresse) en COD ou carte/UPI.
- Annuler, changer de statut, suivre l'expédition, gérer les retours.
- Confirmer une commande quand le paiement est réconcilié (appelé par le webhook).
Concurrence:
- Toute mutation relit la commande, réévalue les gardes puis écrit par compare-and-set
  sur la colonne version. Une course perdue relance la lecture (MAX_CAS_ATTEMPTS fois).
Effets secondaires:
- Kafka/e-mail/facture passent par le NotificationDispatcher (best-effort, jamais bloquant).
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from commerce import config
from commerce.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from commerce.notifications import topics
from commerce.notifications.emails import order_confirmation
from commerce.orders.models import (
    AddressIn,
    AddressUpdate,
    CancelResult,
    DispatchStatus,
    OrderStatus,
    PaymentMode,
    PaymentStatus,
    PlaceOrderRequest,
    ReturnStatus,
)
from commerce.orders.status import (
    NON_CANCELLABLE_DISPATCH,
    NON_CANCELLABLE_STATUSES,
    check_dispatch_transition,
    check_transition,
    parse_status,
)

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3
CENT = Decimal("0.01")
ADDRESS_SNAPSHOT_FIELDS = (
    "name", "phone", "country", "state", "city", "pin_code",
    "address_line1", "address_line2", "address_type",
)


def to_money(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Montant invalide: {value}")


class _CancelRefused(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# module commerce.orders.service
class OrderService:
    def __init__(
        self,
        orders,
        addresses,
        returns,
        payments,
        cart,
        gateway,
        dispatcher,
        shipping_days: int = config.VENDOR_SHIPPING_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.orders = orders
        self.addresses = addresses
        self.returns = returns
        self.payments = payments
        self.cart = cart
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.shipping_days = shipping_days
        self.clock = clock

    # --- Mutation sous verrou optimiste ---

    def mutate(self, order_id: str, decide: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Lit la commande, calcule les changements via decide(order) puis écrit en compare-and-set.
        decide peut lever (garde refusée) ou retourner None/{} (rien à écrire).
        """
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            order = self.orders.get(order_id)
            if not order:
                raise NotFoundError("Commande introuvable")
            changes = decide(order)
            if not changes:
                return order
            updated = self.orders.compare_and_set(order_id, int(order.get("version") or 1), changes)
            if updated:
                updated.setdefault("order_items", order.get("order_items") or [])
                return updated
            logger.info("orders.mutate version conflict order_id=%s attempt=%s", order_id, attempt)
        raise ConflictError("Commande modifiée simultanément, veuillez réessayer")

    # --- Placement ---

    def _validate_items(self, request: PlaceOrderRequest) -> Tuple[List[Dict[str, Any]], Decimal]:
        if not request.items:
            raise ValidationError("La commande ne contient aucun article")
        lines: List[Dict[str, Any]] = []
        computed = Decimal("0")
        for it in request.items:
            if int(it.quantity) < 1:
                raise ValidationError("La quantité doit être supérieure à 0")
            price = Decimal(str(it.price))
            if price < 0 or price != to_money(price):
                raise ValidationError("Prix invalide")
            line_total = price * int(it.quantity)
            computed += line_total
            lines.append({
                "product_id": it.product_id,
                "vendor_id": it.vendor_id,
                "listing_id": it.listing_id,
                "quantity": int(it.quantity),
                "unit_price": str(to_money(price)),
                "total_price": str(to_money(line_total)),
            })
        # Montants au centime près; le total client doit correspondre exactement au total recalculé
        claimed = Decimal(str(request.total_amount))
        if claimed != to_money(claimed):
            raise ValidationError("Montant invalide: au plus 2 décimales")
        if computed != claimed:
            raise ValidationError("Total amount mismatch")
        return lines, to_money(computed)

    def place_order(self, buyer_id: str, request: PlaceOrderRequest, buyer_email: Optional[str] = None):
        """
        COD: commande confirmée immédiatement, paiement 'success', panier vidé; retourne la commande.
        Carte/UPI: commande 'pending', paiement 'pending', session Stripe; retourne
        {checkoutUrl, orderId, paymentId}. Le panier n'est vidé qu'au webhook.
        """
        try:
            mode = PaymentMode(request.payment_mode)
        except ValueError:
            raise ValidationError(f"Mode de paiement invalide: {request.payment_mode}")
        lines, total = self._validate_items(request)

        address = self.addresses.get(request.shipping_address_id, buyer_id)
        if not address:
            raise NotFoundError("Adresse de livraison introuvable")
        snapshot = {k: address.get(k) for k in ADDRESS_SNAPSHOT_FIELDS}

        now = self.clock()
        row: Dict[str, Any] = {
            "buyer_id": buyer_id,
            "total_amount": str(total),
            "shipping_address_id": request.shipping_address_id,
            "shipping_address": snapshot,
            "payment_mode": mode.value,
            "placed_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        if mode == PaymentMode.COD:
            return self._place_cod(row, lines, total, now, buyer_email)
        return self._place_online(row, lines, total, mode, buyer_email)

    def _place_cod(self, row, lines, total, now, buyer_email):
        row.update({
            "status": OrderStatus.CONFIRMED.value,
            "payment_status": PaymentStatus.SUCCESS.value,
            "dispatch_status": DispatchStatus.PREPARING.value,
            "dispatch_time": (now + timedelta(days=self.shipping_days)).isoformat(),
        })
        order = self.orders.create(row, lines)
        try:
            payment = self.payments.create({
                "user_id": order["buyer_id"],
                "order_id": order["id"],
                "amount": str(total),
                "method": PaymentMode.COD.value,
                "status": PaymentStatus.SUCCESS.value,
                "transaction_id": f"cod_{uuid4().hex}",
            })
        except Exception:
            self._compensate(order["id"], None)
            raise
        logger.info("orders.place_order cod order_id=%s buyer_id=%s total=%s", order["id"], order["buyer_id"], total)

        try:
            self.cart.checkout(order["buyer_id"])
        except Exception:
            logger.exception("orders.place_order cart clear failed order_id=%s", order["id"])

        self._emit_created(order)
        self._notify_confirmed(order, buyer_email)
        order["payment"] = payment
        return order

    def _place_online(self, row, lines, total, mode, buyer_email):
        row.update({
            "status": OrderStatus.PENDING.value,
            "payment_status": PaymentStatus.PENDING.value,
            "dispatch_status": DispatchStatus.NOT_STARTED.value,
            "dispatch_time": None,
        })
        order = self.orders.create(row, lines)
        payment = None
        try:
            payment = self.payments.create({
                "user_id": order["buyer_id"],
                "order_id": order["id"],
                "amount": str(total),
                "method": mode.value,
                "status": PaymentStatus.PENDING.value,
                "transaction_id": "",
            })
            session = self.gateway.create_checkout_session(order, payment, lines, customer_email=buyer_email)
        except Exception:
            self._compensate(order["id"], payment)
            raise

        self.payments.update(payment["id"], {"transaction_id": session["id"]})
        logger.info(
            "orders.place_order %s order_id=%s payment_id=%s session_id=%s",
            mode.value, order["id"], payment["id"], session["id"],
        )
        self._emit_created(order)
        return {"checkoutUrl": session["url"], "orderId": order["id"], "paymentId": payment["id"]}

    def _compensate(self, order_id: str, payment: Optional[Dict[str, Any]]) -> None:
        """Échec après création: tentative 'failed', commande 'canceled'. Les erreurs sont journalisées."""
        logger.warning("orders.place_order compensating order_id=%s", order_id)
        try:
            if payment:
                self.payments.update(payment["id"], {"status": PaymentStatus.FAILED.value})
            self.mutate(order_id, lambda o: {
                "status": OrderStatus.CANCELED.value,
                "payment_status": PaymentStatus.FAILED.value,
            })
        except Exception:
            logger.exception("orders.place_order compensation failed order_id=%s", order_id)

    def _emit_created(self, order: Dict[str, Any]) -> None:
        self.dispatcher.emit(topics.ORDER_CREATED, {
            "orderId": order["id"],
            "buyerId": order["buyer_id"],
            "totalAmount": str(order.get("total_amount")),
            "paymentMode": order.get("payment_mode"),
            "status": order.get("status"),
            "items": [
                {"productId": it.get("product_id"), "vendorId": it.get("vendor_id"), "quantity": it.get("quantity")}
                for it in order.get("order_items") or []
            ],
        }, key=order["id"])

    def _notify_confirmed(self, order: Dict[str, Any], buyer_email: Optional[str]) -> None:
        subject, html = order_confirmation(order, order.get("order_items") or [])
        self.dispatcher.send_email(buyer_email, subject, html)
        self.dispatcher.request_invoice(order["id"], order["buyer_id"])

    # --- Confirmation de paiement (webhook) ---

    def confirm_payment(self, order_id: str) -> Tuple[Dict[str, Any], str]:
        """
        pending -> confirmed avec payment_status=success.
        Retourne (commande, issue) avec issue dans {"confirmed", "already_confirmed", "canceled"}.
        Une commande annulée entre-temps n'est pas ressuscitée.
        """
        outcome = {"value": "confirmed"}

        def decide(order):
            status = parse_status(order.get("status"))
            if status == OrderStatus.PENDING:
                outcome["value"] = "confirmed"
                changes = {
                    "status": OrderStatus.CONFIRMED.value,
                    "payment_status": PaymentStatus.SUCCESS.value,
                }
                if order.get("dispatch_status") in (None, DispatchStatus.NOT_STARTED.value):
                    changes["dispatch_status"] = DispatchStatus.PREPARING.value
                    changes["dispatch_time"] = (self.clock() + timedelta(days=self.shipping_days)).isoformat()
                return changes
            if status == OrderStatus.CANCELED:
                outcome["value"] = "canceled"
                return None
            outcome["value"] = "already_confirmed"
            if order.get("payment_status") != PaymentStatus.SUCCESS.value:
                return {"payment_status": PaymentStatus.SUCCESS.value}
            return None

        order = self.mutate(order_id, decide)
        return order, outcome["value"]

    def notify_payment_confirmed(self, order: Dict[str, Any], buyer_email: Optional[str] = None) -> None:
        self._notify_confirmed(order, buyer_email)

    # --- Annulation / statuts ---

    def cancel_order(self, order_id: str, buyer_id: str) -> CancelResult:
        def decide(order):
            if order.get("buyer_id") != buyer_id:
                raise AuthorizationError("Cette commande ne vous appartient pas")
            status = parse_status(order.get("status"))
            if status == OrderStatus.CANCELED:
                raise ConflictError("Commande déjà annulée")
            if order.get("dispatch_status") in {d.value for d in NON_CANCELLABLE_DISPATCH}:
                raise _CancelRefused("Commande déjà expédiée: annulation impossible")
            if status in NON_CANCELLABLE_STATUSES:
                raise _CancelRefused(f"Commande {status.value}: annulation impossible")
            check_transition(status, OrderStatus.CANCELED)
            changes = {"status": OrderStatus.CANCELED.value}
            if order.get("payment_status") == PaymentStatus.PENDING.value:
                changes["payment_status"] = PaymentStatus.FAILED.value
            return changes

        try:
            order = self.mutate(order_id, decide)
        except _CancelRefused as refusal:
            return CancelResult(success=False, message=str(refusal))

        self._after_cancel(order, buyer_id)
        return CancelResult(success=True, message="Commande annulée", order=order)

    def _after_cancel(self, order: Dict[str, Any], buyer_id: Optional[str]) -> None:
        """Tentatives 'pending' en échec, order.cancelled, remboursement si déjà payée en ligne."""
        order_id = order["id"]
        failed = self.payments.fail_pending_for_order(order_id)
        logger.info("orders.cancel_order order_id=%s failed_attempts=%s", order_id, len(failed or []))
        self.dispatcher.emit(topics.ORDER_CANCELLED, {
            "orderId": order_id,
            "buyerId": buyer_id,
            "paymentStatus": order.get("payment_status"),
        }, key=order_id)
        if order.get("payment_status") == PaymentStatus.SUCCESS.value and order.get("payment_mode") != PaymentMode.COD.value:
            self.dispatcher.emit(topics.ORDER_REFUND_REQUIRED, {
                "orderId": order_id, "buyerId": buyer_id, "reason": "cancelled_after_payment",
            }, key=order_id)

    def update_order_status(self, order_id: str, status) -> Dict[str, Any]:
        """Changement de statut admin; 'canceled' applique les mêmes effets que l'annulation acheteur."""
        target = parse_status(status)
        previous = {}

        def decide(order):
            current = parse_status(order.get("status"))
            previous["status"] = current.value
            if current == target:
                return None
            check_transition(current, target)
            changes = {"status": target.value}
            if target == OrderStatus.DELIVERED:
                changes["dispatch_status"] = DispatchStatus.DELIVERED.value
            elif target == OrderStatus.CANCELED and order.get("payment_status") == PaymentStatus.PENDING.value:
                changes["payment_status"] = PaymentStatus.FAILED.value
            return changes

        order = self.mutate(order_id, decide)
        logger.info("orders.update_order_status order_id=%s %s->%s", order_id, previous.get("status"), target.value)
        if target == OrderStatus.CANCELED and previous.get("status") != target.value:
            self._after_cancel(order, order.get("buyer_id"))
        self.dispatcher.emit(topics.ORDER_UPDATED, {
            "orderId": order_id,
            "status": target.value,
            "previousStatus": previous.get("status"),
        }, key=order_id)
        return order

    def update_dispatch_status(self, order_id: str, dispatch_status, vendor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Met à jour le suivi logistique. Un vendeur ne peut agir que sur une commande
        contenant au moins une de ses lignes.
        Départ du colis (dispatched/in_transit) sur commande confirmée => statut shipped;
        livraison logistique sur commande expédiée => statut delivered.
        """
        def decide(order):
            if vendor_id is not None:
                vendors = {it.get("vendor_id") for it in order.get("order_items") or []}
                if vendor_id not in vendors:
                    raise AuthorizationError("Commande d'un autre vendeur")
            target = check_dispatch_transition(order.get("status"), order.get("dispatch_status"), dispatch_status)
            if order.get("dispatch_status") == target.value:
                return None
            changes = {"dispatch_status": target.value}
            status = parse_status(order.get("status"))
            if target in (DispatchStatus.DISPATCHED, DispatchStatus.IN_TRANSIT) and status == OrderStatus.CONFIRMED:
                changes["status"] = OrderStatus.SHIPPED.value
            elif target == DispatchStatus.DELIVERED and status == OrderStatus.SHIPPED:
                changes["status"] = OrderStatus.DELIVERED.value
            return changes

        order = self.mutate(order_id, decide)
        self.dispatcher.emit(topics.DISPATCH_STATUS_UPDATED, {
            "orderId": order_id,
            "dispatchStatus": order.get("dispatch_status"),
            "status": order.get("status"),
        }, key=order_id)
        return order

    # --- Lectures ---

    def get_orders_by_user(self, buyer_id: str) -> List[Dict[str, Any]]:
        return self.orders.list_by_buyer(buyer_id)

    def get_order_by_id(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if not order:
            raise NotFoundError("Commande introuvable")
        return order

    def get_vendor_orders(self, vendor_id: str) -> List[Dict[str, Any]]:
        return self.orders.list_by_vendor(vendor_id)

    # --- Retours ---

    def request_return(self, order_id: str, buyer_id: str, reason: str) -> Dict[str, Any]:
        order = self.get_order_by_id(order_id)
        if order.get("buyer_id") != buyer_id:
            raise AuthorizationError("Cette commande ne vous appartient pas")
        if order.get("status") != OrderStatus.DELIVERED.value:
            raise ConflictError("Seule une commande livrée peut être retournée")
        if self.returns.find_open(order_id):
            raise ConflictError("Une demande de retour est déjà en cours")
        request = self.returns.create(order_id, buyer_id, reason.strip())
        logger.info("orders.request_return order_id=%s request_id=%s", order_id, request.get("id"))
        return request

    def get_return_requests_by_user(self, buyer_id: str) -> List[Dict[str, Any]]:
        return self.returns.list_by_buyer(buyer_id)

    def review_return(self, request_id: str, approve: bool, vendor_id: Optional[str] = None) -> Dict[str, Any]:
        request = self.returns.get(request_id)
        if not request:
            raise NotFoundError("Demande de retour introuvable")
        if request.get("status") != ReturnStatus.PENDING.value:
            raise ConflictError("Demande de retour déjà traitée")

        order_id = request["order_id"]
        if vendor_id is not None:
            order = self.get_order_by_id(order_id)
            if vendor_id not in {it.get("vendor_id") for it in order.get("order_items") or []}:
                raise AuthorizationError("Commande d'un autre vendeur")

        if approve:
            self.mutate(order_id, lambda o: {
                "status": check_transition(o.get("status"), OrderStatus.RETURNED, allow_reserved=True).value,
            })
        reviewed = self.returns.set_status(
            request_id, (ReturnStatus.APPROVED if approve else ReturnStatus.REJECTED).value
        )
        if not reviewed:
            raise ConflictError("Demande de retour déjà traitée")
        if approve:
            self.dispatcher.emit(topics.ORDER_RETURNED, {
                "orderId": order_id,
                "buyerId": request.get("buyer_id"),
                "returnRequestId": request_id,
            }, key=order_id)
        return reviewed


class AddressService:
    """Carnet d'adresses de livraison (propriété vérifiée à chaque accès)."""

    def __init__(self, addresses):
        self.addresses = addresses

    def list_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        return self.addresses.list(user_id)

    def add_address(self, user_id: str, data: AddressIn) -> Dict[str, Any]:
        return self.addresses.create(user_id, data.model_dump(by_alias=False))

    def edit_address(self, user_id: str, address_id: str, data: AddressUpdate) -> Dict[str, Any]:
        # null n'efface que la ligne 2; les autres champs restent obligatoires
        changes = {
            k: v for k, v in data.model_dump(by_alias=False, exclude_unset=True).items()
            if v is not None or k == "address_line2"
        }
        if not changes:
            raise ValidationError("Aucun champ à modifier")
        if not self.addresses.get(address_id, user_id):
            raise NotFoundError("Adresse introuvable")
        updated = self.addresses.update(address_id, user_id, changes)
        if not updated:
            raise NotFoundError("Adresse introuvable")
        return updated

    def delete_address(self, user_id: str, address_id: str) -> None:
        if not self.addresses.delete(address_id, user_id):
            raise NotFoundError("Adresse introuvable")
