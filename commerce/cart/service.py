"""Couche service de la feature Panier.
Rôles:
- Ajouter/retirer des articles (fusion sur (user_id, listing_id) pour le panier actif).
- Déplacer un article entre panier et « pour plus tard ».
- Lire le panier actif via le cache Redis (lecture traversante).
- Vider le panier actif après paiement (checkout), de façon idempotente.
Chaque mutation invalide le cache puis publie cart.updated (ou cart.checked_out).
"""
import logging
from typing import Any, Dict, List, Optional

from commerce.errors import NotFoundError, ValidationError
from commerce.notifications import topics

logger = logging.getLogger(__name__)


class CartService:
    def __init__(self, repository, cache, dispatcher):
        self.repository = repository
        self.cache = cache
        self.dispatcher = dispatcher

    def _changed(self, user_id: str, action: str, **extra) -> None:
        self.cache.invalidate(user_id)
        self.dispatcher.emit(topics.CART_UPDATED, {"userId": user_id, "action": action, **extra}, key=user_id)

    def add_to_cart(self, user_id: str, listing_id: str, quantity: int = 1) -> Dict[str, Any]:
        if int(quantity) < 1:
            raise ValidationError("La quantité doit être supérieure à 0")
        listing = self.repository.get_listing(listing_id)
        if not listing:
            raise NotFoundError("Produit introuvable")

        existing = self.repository.find(user_id, listing_id)
        if existing:
            item = self.repository.update(existing["id"], {"quantity": int(existing["quantity"]) + int(quantity)})
        else:
            row = {
                "user_id": user_id,
                "listing_id": listing_id,
                "product_id": listing.get("product_id"),
                "vendor_id": listing.get("vendor_id"),
                "quantity": int(quantity),
                "saved_for_later": False,
            }
            try:
                item = self.repository.insert(row)
            except Exception:
                # Insertion concurrente: l'index unique a refusé la seconde ligne, on fusionne
                existing = self.repository.find(user_id, listing_id)
                if not existing:
                    raise
                logger.info("cart.add_to_cart merged after conflict user_id=%s listing_id=%s", user_id, listing_id)
                item = self.repository.update(existing["id"], {"quantity": int(existing["quantity"]) + int(quantity)})

        self._changed(user_id, "add", listingId=listing_id, quantity=int(quantity))
        return item

    def update_cart_item_quantity(self, user_id: str, listing_id: str, quantity_change: int) -> Optional[Dict[str, Any]]:
        """Applique un delta de quantité; à 0 ou moins la ligne est supprimée (retourne None)."""
        existing = self.repository.find(user_id, listing_id)
        if not existing:
            raise NotFoundError("Article absent du panier")
        new_qty = int(existing["quantity"]) + int(quantity_change)
        if new_qty <= 0:
            self.repository.delete(existing["id"])
            item = None
        else:
            item = self.repository.update(existing["id"], {"quantity": new_qty})
        self._changed(user_id, "update", listingId=listing_id, quantity=max(new_qty, 0))
        return item

    def delete_cart_item(self, user_id: str, item_id: str) -> None:
        item = self.repository.get_item(item_id, user_id)
        if not item:
            raise NotFoundError("Article absent du panier")
        self.repository.delete(item_id)
        self._changed(user_id, "delete", listingId=item.get("listing_id"))

    def toggle_save_for_later(self, user_id: str, item_id: str, save_for_later: bool) -> Dict[str, Any]:
        item = self.repository.get_item(item_id, user_id)
        if not item:
            raise NotFoundError("Article absent du panier")
        if bool(item.get("saved_for_later")) == bool(save_for_later):
            return item

        result = None
        if not save_for_later:
            # Retour au panier: fusion avec la ligne active existante
            active = self.repository.find(user_id, item["listing_id"])
            if active:
                result = self.repository.update(
                    active["id"], {"quantity": int(active["quantity"]) + int(item["quantity"])}
                )
                self.repository.delete(item_id)
        if result is None:
            result = self.repository.update(item_id, {"saved_for_later": bool(save_for_later)})

        self._changed(user_id, "save_for_later" if save_for_later else "move_to_cart", listingId=item["listing_id"])
        return result

    def get_cart(self, user_id: str) -> List[Dict[str, Any]]:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        items = self.repository.list(user_id, saved_for_later=False)
        self.cache.set(user_id, items)
        return items

    def get_wishlist(self, user_id: str) -> List[Dict[str, Any]]:
        return self.repository.list(user_id, saved_for_later=True)

    def checkout(self, user_id: str) -> int:
        """Vide le panier actif. Idempotent: un second appel supprime 0 ligne."""
        removed = self.repository.delete_active(user_id)
        self.cache.invalidate(user_id)
        self.dispatcher.emit(topics.CART_CHECKED_OUT, {"userId": user_id, "itemsRemoved": removed}, key=user_id)
        logger.info("cart.checkout user_id=%s removed=%s", user_id, removed)
        return removed
