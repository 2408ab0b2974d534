from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from commerce.cart.service import CartService
from commerce.dependencies import get_cart_service
from commerce.utils.security import require_user

router = APIRouter(prefix="/cart", tags=["Cart API"])


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    listing_id: str = Field(alias="listingId")
    quantity: int = 1


class QuantityChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    quantity_change: int = Field(alias="quantityChange")


class SaveForLaterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    save_for_later: bool = Field(alias="saveForLater")


# module commerce.cart.views
@router.get("")
def get_cart(user: Dict[str, Any] = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return {"items": service.get_cart(user["id"])}


@router.get("/wishlist")
def get_wishlist(user: Dict[str, Any] = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return {"items": service.get_wishlist(user["id"])}


@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_to_cart(body: AddToCartRequest, user: Dict[str, Any] = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return service.add_to_cart(user["id"], body.listing_id, body.quantity)


@router.patch("/items/{listing_id}")
def update_quantity(
    listing_id: str,
    body: QuantityChangeRequest,
    user: Dict[str, Any] = Depends(require_user),
    service: CartService = Depends(get_cart_service),
):
    """Delta de quantité; {"item": null} si la ligne a été supprimée."""
    return {"item": service.update_cart_item_quantity(user["id"], listing_id, body.quantity_change)}


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: str, user: Dict[str, Any] = Depends(require_user), service: CartService = Depends(get_cart_service)):
    service.delete_cart_item(user["id"], item_id)


@router.patch("/items/{item_id}/save-for-later")
def save_for_later(
    item_id: str,
    body: SaveForLaterRequest,
    user: Dict[str, Any] = Depends(require_user),
    service: CartService = Depends(get_cart_service),
):
    return service.toggle_save_for_later(user["id"], item_id, body.save_for_later)


@router.post("/checkout")
def checkout(user: Dict[str, Any] = Depends(require_user), service: CartService = Depends(get_cart_service)):
    return {"removed": service.checkout(user["id"])}
