"""
Accès aux données pour la feature 'cart' (tables cart_items, product_listings).
Une seule ligne active (saved_for_later=false) par (user_id, listing_id):
garanti par l'index unique partiel cart_items_active_uniq (voir sql/schema.sql).
"""
from typing import Any, Dict, List, Optional

from commerce.infra.supabase_client import SupabaseRepository, first_row


# module commerce.cart.repository
class CartRepository(SupabaseRepository):
    def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("product_listings")
            .select("id, product_id, vendor_id, price, stock")
            .eq("id", listing_id)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def get_item(self, item_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("cart_items")
            .select("*")
            .eq("id", item_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def find(self, user_id: str, listing_id: str, saved_for_later: bool = False) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("cart_items")
            .select("*")
            .eq("user_id", user_id)
            .eq("listing_id", listing_id)
            .eq("saved_for_later", saved_for_later)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        created = first_row(self.db.table("cart_items").insert(row).execute())
        if not created:
            raise RuntimeError("Insertion panier sans retour")
        return created

    def update(self, item_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        res = self.db.table("cart_items").update(changes).eq("id", item_id).execute()
        return first_row(res)

    def delete(self, item_id: str) -> bool:
        res = self.db.table("cart_items").delete().eq("id", item_id).execute()
        return bool(res.data)

    def list(self, user_id: str, saved_for_later: bool = False) -> List[Dict[str, Any]]:
        res = (
            self.db.table("cart_items")
            .select("*, product_listings(price, stock)")
            .eq("user_id", user_id)
            .eq("saved_for_later", saved_for_later)
            .execute()
        )
        return res.data or []

    def delete_active(self, user_id: str) -> int:
        """Vide le panier actif (les articles 'pour plus tard' sont conservés). Retourne le nombre supprimé."""
        res = (
            self.db.table("cart_items")
            .delete()
            .eq("user_id", user_id)
            .eq("saved_for_later", False)
            .execute()
        )
        return len(res.data or [])
