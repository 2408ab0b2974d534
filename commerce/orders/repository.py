"""
Accès aux données pour la feature 'orders' (tables orders, order_items, addresses, return_requests).

Toutes les écritures passent par le client service-role. Contrairement aux lectures
d'affichage, une erreur d'écriture n'est jamais masquée: elle est journalisée puis propagée,
l'appelant décide (compensation, 500 pour relivraison du webhook, ...).
"""
import logging
from typing import Any, Dict, List, Optional

from commerce.infra.supabase_client import SupabaseRepository, first_row, utc_now_iso
from commerce.orders.models import ReturnStatus

logger = logging.getLogger(__name__)

BUYER_SUMMARY = "buyer:users(id, email, full_name)"
ORDER_SELECT = f"*, order_items(*), {BUYER_SUMMARY}"


# module commerce.orders.repository
class OrderRepository(SupabaseRepository):
    def create(self, order: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Insère la commande (version=1) puis ses lignes.
        Si l'insertion des lignes échoue, la commande orpheline est supprimée avant de propager l'erreur.
        """
        row = {**order, "version": 1}
        try:
            created = first_row(self.db.table("orders").insert(row).execute())
        except Exception:
            logger.exception("orders.repository.create failed buyer_id=%s", order.get("buyer_id"))
            raise
        if not created:
            raise RuntimeError("Insertion de la commande sans retour")
        order_id = created["id"]
        try:
            lines = [{**it, "order_id": order_id} for it in items]
            res = self.db.table("order_items").insert(lines).execute()
        except Exception:
            logger.exception("orders.repository.create items failed order_id=%s", order_id)
            self.db.table("orders").delete().eq("id", order_id).execute()
            raise
        created["order_items"] = res.data or lines
        return created

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("orders")
            .select(ORDER_SELECT)
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def list_by_buyer(self, buyer_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        res = (
            self.db.table("orders")
            .select(ORDER_SELECT)
            .eq("buyer_id", buyer_id)
            .order("placed_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []

    def list_by_vendor(self, vendor_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Commandes contenant au moins une ligne du vendeur (jointure interne sur order_items)."""
        res = (
            self.db.table("orders")
            .select(f"*, order_items!inner(*), {BUYER_SUMMARY}")
            .eq("order_items.vendor_id", vendor_id)
            .order("placed_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []

    def compare_and_set(self, order_id: str, expected_version: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Mise à jour conditionnelle sur la version (verrou optimiste).
        Retourne la ligne mise à jour, ou None si la version a changé entre-temps.
        """
        payload = {**changes, "version": int(expected_version) + 1, "updated_at": utc_now_iso()}
        try:
            res = (
                self.db.table("orders")
                .update(payload)
                .eq("id", order_id)
                .eq("version", int(expected_version))
                .execute()
            )
        except Exception:
            logger.exception("orders.repository.compare_and_set failed order_id=%s", order_id)
            raise
        return first_row(res)


class AddressRepository(SupabaseRepository):
    def list(self, user_id: str) -> List[Dict[str, Any]]:
        res = (
            self.db.table("addresses")
            .select("*")
            .eq("user_id", user_id)
            .order("is_default", desc=True)
            .execute()
        )
        return res.data or []

    def get(self, address_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Adresse uniquement si elle appartient à user_id."""
        res = (
            self.db.table("addresses")
            .select("*")
            .eq("id", address_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def create(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("is_default"):
            self.db.table("addresses").update({"is_default": False}).eq("user_id", user_id).execute()
        created = first_row(self.db.table("addresses").insert({**data, "user_id": user_id}).execute())
        if not created:
            raise RuntimeError("Insertion de l'adresse sans retour")
        return created

    def update(self, address_id: str, user_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Met à jour une adresse de user_id; None si elle n'existe pas ou appartient à un autre."""
        if changes.get("is_default"):
            (
                self.db.table("addresses")
                .update({"is_default": False})
                .eq("user_id", user_id)
                .neq("id", address_id)
                .execute()
            )
        res = (
            self.db.table("addresses")
            .update(changes)
            .eq("id", address_id)
            .eq("user_id", user_id)
            .execute()
        )
        return first_row(res)

    def delete(self, address_id: str, user_id: str) -> bool:
        res = (
            self.db.table("addresses")
            .delete()
            .eq("id", address_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(res.data)


class ReturnRequestRepository(SupabaseRepository):
    def create(self, order_id: str, buyer_id: str, reason: str) -> Dict[str, Any]:
        row = {
            "order_id": order_id,
            "buyer_id": buyer_id,
            "reason": reason,
            "status": ReturnStatus.PENDING.value,
            "created_at": utc_now_iso(),
        }
        created = first_row(self.db.table("return_requests").insert(row).execute())
        if not created:
            raise RuntimeError("Insertion de la demande de retour sans retour")
        return created

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        res = self.db.table("return_requests").select("*").eq("id", request_id).limit(1).execute()
        return first_row(res)

    def list_by_buyer(self, buyer_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        res = (
            self.db.table("return_requests")
            .select("*")
            .eq("buyer_id", buyer_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []

    def find_open(self, order_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("return_requests")
            .select("*")
            .eq("order_id", order_id)
            .eq("status", ReturnStatus.PENDING.value)
            .limit(1)
            .execute()
        )
        return first_row(res)

    def set_status(self, request_id: str, status: str) -> Optional[Dict[str, Any]]:
        res = (
            self.db.table("return_requests")
            .update({"status": status, "reviewed_at": utc_now_iso()})
            .eq("id", request_id)
            .eq("status", ReturnStatus.PENDING.value)
            .execute()
        )
        return first_row(res)
