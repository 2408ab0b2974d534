"""
Machine à états des commandes.

status (commande):
    pending   -> confirmed | canceled
    confirmed -> shipped | canceled | refunded
    shipped   -> delivered | refunded
    delivered -> returned (via demande de retour approuvée) | refunded
    canceled, returned, refunded: terminaux

dispatch_status (logistique vendeur):
    not_started -> preparing -> dispatched -> in_transit -> delivered
    tout état non terminal -> failed ; failed -> preparing (réexpédition)
"""
from typing import Dict, FrozenSet, Optional

from commerce.errors import ConflictError, ValidationError
from commerce.orders.models import DispatchStatus, OrderStatus

S = OrderStatus
D = DispatchStatus

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELED}),
    S.CONFIRMED: frozenset({S.SHIPPED, S.CANCELED, S.REFUNDED}),
    S.SHIPPED: frozenset({S.DELIVERED, S.REFUNDED}),
    S.DELIVERED: frozenset({S.RETURNED, S.REFUNDED}),
    S.CANCELED: frozenset(),
    S.RETURNED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ORDER_TRANSITIONS.items() if not nxt)

# Transitions réservées à un flux dédié (pas de PATCH direct)
RESERVED_TRANSITIONS = frozenset({(S.DELIVERED, S.RETURNED)})

DISPATCH_TRANSITIONS: Dict[DispatchStatus, FrozenSet[DispatchStatus]] = {
    D.NOT_STARTED: frozenset({D.PREPARING, D.FAILED}),
    D.PREPARING: frozenset({D.DISPATCHED, D.FAILED}),
    D.DISPATCHED: frozenset({D.IN_TRANSIT, D.DELIVERED, D.FAILED}),
    D.IN_TRANSIT: frozenset({D.DELIVERED, D.FAILED}),
    D.DELIVERED: frozenset(),
    D.FAILED: frozenset({D.PREPARING}),
}

# Une fois le colis parti, la commande n'est plus annulable
NON_CANCELLABLE_DISPATCH = frozenset({D.DISPATCHED, D.IN_TRANSIT})
NON_CANCELLABLE_STATUSES = frozenset({S.SHIPPED, S.DELIVERED, S.RETURNED, S.REFUNDED})

# Statuts de commande compatibles avec une mise à jour logistique
DISPATCH_ALLOWED_STATUSES = frozenset({S.CONFIRMED, S.SHIPPED, S.DELIVERED})


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(getattr(value, "value", value)))
    except ValueError:
        raise ValidationError(f"Statut de commande invalide: {value}")


def parse_dispatch_status(value) -> DispatchStatus:
    try:
        return DispatchStatus(str(getattr(value, "value", value)))
    except ValueError:
        raise ValidationError(f"Statut d'expédition invalide: {value}")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def check_transition(current, target, allow_reserved: bool = False) -> OrderStatus:
    """Vérifie current -> target et retourne target (ConflictError sinon)."""
    cur = parse_status(current)
    nxt = parse_status(target)
    if not can_transition(cur, nxt):
        raise ConflictError(f"Transition interdite: {cur.value} -> {nxt.value}")
    if (cur, nxt) in RESERVED_TRANSITIONS and not allow_reserved:
        raise ConflictError(f"Transition {cur.value} -> {nxt.value} réservée au flux de retour")
    return nxt


def check_dispatch_transition(order_status, current_dispatch, target) -> DispatchStatus:
    """
    Vérifie une mise à jour logistique:
    - la commande doit être confirmée/expédiée/livrée (pas pending, pas terminale)
    - 'delivered' côté logistique exige une commande shipped ou delivered
    - la transition doit exister dans DISPATCH_TRANSITIONS (la même valeur est un no-op accepté)
    """
    status = parse_status(order_status)
    nxt = parse_dispatch_status(target)
    cur: Optional[DispatchStatus] = parse_dispatch_status(current_dispatch) if current_dispatch else None
    if status not in DISPATCH_ALLOWED_STATUSES:
        raise ConflictError(f"Expédition impossible pour une commande {status.value}")
    if nxt == D.DELIVERED and status not in (S.SHIPPED, S.DELIVERED):
        raise ConflictError("Livraison impossible: la commande n'est pas expédiée")
    if cur is not None and cur != nxt and nxt not in DISPATCH_TRANSITIONS[cur]:
        raise ConflictError(f"Transition d'expédition interdite: {cur.value} -> {nxt.value}")
    return nxt
