import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from commerce.dependencies import get_address_service, get_order_service
from commerce.errors import AuthorizationError
from commerce.orders.models import (
    AddressIn,
    AddressUpdate,
    PlaceOrderRequest,
    ReturnRequestIn,
    ReviewReturnRequest,
    UpdateDispatchRequest,
    UpdateStatusRequest,
)
from commerce.orders.service import AddressService, OrderService
from commerce.utils.rate_limit import optional_rate_limit
from commerce.utils.security import require_admin, require_user, require_vendor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders API"])
address_router = APIRouter(prefix="/addresses", tags=["Addresses API"])


def _vendor_scope(user: Dict[str, Any]):
    """None pour un admin (toutes commandes), sinon le vendor_id de l'utilisateur."""
    return None if user.get("role") == "admin" else user.get("vendor_id")


# module commerce.orders.views
@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def place_order(
    body: PlaceOrderRequest,
    user: Dict[str, Any] = Depends(require_user),
    service: OrderService = Depends(get_order_service),
):
    """
    Place une commande pour l'utilisateur authentifié.
    - COD: renvoie la commande confirmée
    - card/upi: renvoie {checkoutUrl, orderId, paymentId} (redirection Stripe)
    - Erreurs: 400 (total, articles, mode), 404 (adresse), 502 (Stripe)
    """
    return service.place_order(user["id"], body, buyer_email=user.get("email"))


@router.get("")
def list_my_orders(user: Dict[str, Any] = Depends(require_user), service: OrderService = Depends(get_order_service)):
    return {"orders": service.get_orders_by_user(user["id"])}


@router.get("/vendor/orders")
def list_vendor_orders(user: Dict[str, Any] = Depends(require_vendor), service: OrderService = Depends(get_order_service)):
    vendor_id = user.get("vendor_id") or ""
    return {"orders": service.get_vendor_orders(vendor_id)}


@router.patch("/vendor/orders/{order_id}/dispatch")
def update_dispatch(
    order_id: str,
    body: UpdateDispatchRequest,
    user: Dict[str, Any] = Depends(require_vendor),
    service: OrderService = Depends(get_order_service),
):
    return service.update_dispatch_status(order_id, body.dispatch_status, vendor_id=_vendor_scope(user))


@router.get("/return-requests")
def list_my_return_requests(user: Dict[str, Any] = Depends(require_user), service: OrderService = Depends(get_order_service)):
    return {"returnRequests": service.get_return_requests_by_user(user["id"])}


@router.put("/return-requests/{request_id}")
def review_return(
    request_id: str,
    body: ReviewReturnRequest,
    user: Dict[str, Any] = Depends(require_vendor),
    service: OrderService = Depends(get_order_service),
):
    return service.review_return(request_id, body.approve, vendor_id=_vendor_scope(user))


@router.get("/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(require_user), service: OrderService = Depends(get_order_service)):
    """Visible par l'acheteur, un vendeur présent dans la commande, ou un admin."""
    order = service.get_order_by_id(order_id)
    if user.get("role") == "admin" or order.get("buyer_id") == user["id"]:
        return order
    vendors = {it.get("vendor_id") for it in order.get("order_items") or []}
    if user.get("vendor_id") and user.get("vendor_id") in vendors:
        return order
    raise AuthorizationError("Accès interdit")


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, user: Dict[str, Any] = Depends(require_user), service: OrderService = Depends(get_order_service)):
    """
    Annulation par l'acheteur.
    - 200 {success: true, order} si annulée
    - 200 {success: false, message} si la commande est déjà partie
    - 409 si déjà annulée, 403 si commande d'un autre utilisateur
    """
    result = service.cancel_order(order_id, user["id"])
    return result.model_dump()


@router.patch("/{order_id}")
def update_order_status(
    order_id: str,
    body: UpdateStatusRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    logger.info("orders.views.update_order_status order_id=%s by=%s", order_id, admin.get("id"))
    return service.update_order_status(order_id, body.status)


@router.post("/{order_id}/return", status_code=status.HTTP_201_CREATED)
def request_return(
    order_id: str,
    body: ReturnRequestIn,
    user: Dict[str, Any] = Depends(require_user),
    service: OrderService = Depends(get_order_service),
):
    return service.request_return(order_id, user["id"], body.reason)


@address_router.get("")
def list_addresses(user: Dict[str, Any] = Depends(require_user), service: AddressService = Depends(get_address_service)):
    return {"addresses": service.list_addresses(user["id"])}


@address_router.post("", status_code=status.HTTP_201_CREATED)
def add_address(body: AddressIn, user: Dict[str, Any] = Depends(require_user), service: AddressService = Depends(get_address_service)):
    return service.add_address(user["id"], body)


@address_router.patch("/{address_id}")
def edit_address(
    address_id: str,
    body: AddressUpdate,
    user: Dict[str, Any] = Depends(require_user),
    service: AddressService = Depends(get_address_service),
):
    """Édition partielle; 404 si l'adresse n'appartient pas à l'utilisateur. isDefault=true retire le défaut des autres."""
    return service.edit_address(user["id"], address_id, body)


@address_router.delete("/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_address(address_id: str, user: Dict[str, Any] = Depends(require_user), service: AddressService = Depends(get_address_service)):
    service.delete_address(user["id"], address_id)
