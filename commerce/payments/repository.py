"""
Accès aux données pour la feature 'payments' (tables payments, processed_events).
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from commerce import config
from commerce.infra.supabase_client import SupabaseRepository, first_row, utc_now_iso

logger = logging.getLogger(__name__)

# Issues de ProcessedEventRepository.claim
CLAIMED = "claimed"
DUPLICATE = "duplicate"
IN_PROGRESS = "in_progress"

EVENT_PROCESSING = "processing"
EVENT_DONE = "done"


# module commerce.payments.repository
class PaymentRepository(SupabaseRepository):
    def create(self, row: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now_iso()
        payload = {"transaction_id": "", **row, "created_at": now, "updated_at": now}
        try:
            created = first_row(self.db.table("payments").insert(payload).execute())
        except Exception:
            logger.exception("payments.repository.create failed order_id=%s", row.get("order_id"))
            raise
        if not created:
            raise RuntimeError("Insertion du paiement sans retour")
        return created

    def get(self, payment_id: str) -> Optional[Dict[str, Any]]:
        res = self.db.table("payments").select("*").eq("id", payment_id).limit(1).execute()
        return first_row(res)

    def update(self, payment_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            res = (
                self.db.table("payments")
                .update({**changes, "updated_at": utc_now_iso()})
                .eq("id", payment_id)
                .execute()
            )
        except Exception:
            logger.exception("payments.repository.update failed payment_id=%s", payment_id)
            raise
        return first_row(res)

    def fail_pending_for_order(self, order_id: str) -> List[Dict[str, Any]]:
        """Passe en 'failed' les tentatives encore 'pending' d'une commande."""
        res = (
            self.db.table("payments")
            .update({"status": "failed", "updated_at": utc_now_iso()})
            .eq("order_id", order_id)
            .eq("status", "pending")
            .execute()
        )
        return res.data or []

    def fail_if_pending(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """
        Passe une tentative en 'failed' seulement si elle est encore 'pending'.
        Retourne la ligne modifiée, ou None si un webhook l'a confirmée entre-temps.
        """
        try:
            res = (
                self.db.table("payments")
                .update({"status": "failed", "updated_at": utc_now_iso()})
                .eq("id", payment_id)
                .eq("status", "pending")
                .execute()
            )
        except Exception:
            logger.exception("payments.repository.fail_if_pending failed payment_id=%s", payment_id)
            raise
        return first_row(res)

    def list_by_order(self, order_id: str) -> List[Dict[str, Any]]:
        res = (
            self.db.table("payments")
            .select("*")
            .eq("order_id", order_id)
            .order("created_at", desc=False)
            .execute()
        )
        return res.data or []

    def list_stale_pending(self, cutoff_iso: str, limit: int = 200) -> List[Dict[str, Any]]:
        res = (
            self.db.table("payments")
            .select("*")
            .eq("status", "pending")
            .lt("created_at", cutoff_iso)
            .limit(limit)
            .execute()
        )
        return res.data or []


class ProcessedEventRepository(SupabaseRepository):
    """
    Registre des événements webhook (clé unique event_id).
    Une réservation est 'processing' jusqu'à complete(); une réservation 'processing'
    plus ancienne que stale_after_seconds est reprise (processus mort entre réservation et écritures).
    """

    def __init__(self, client=None, stale_after_seconds: int = config.WEBHOOK_CLAIM_TIMEOUT_SECONDS):
        super().__init__(client)
        self.stale_after_seconds = stale_after_seconds

    def claim(self, event_id: str, event_type: str = "") -> str:
        """
        Réserve l'événement. Retourne:
        - CLAIMED: première réception, ou reprise d'une réservation abandonnée
        - DUPLICATE: événement déjà traité ('done')
        - IN_PROGRESS: un autre traitement récent détient la réservation
        """
        now = datetime.now(timezone.utc)
        row = {
            "event_id": event_id,
            "event_type": event_type,
            "status": EVENT_PROCESSING,
            "claimed_at": now.isoformat(),
        }
        res = (
            self.db.table("processed_events")
            .upsert(row, on_conflict="event_id", ignore_duplicates=True)
            .execute()
        )
        if res.data:
            return CLAIMED

        existing = first_row(
            self.db.table("processed_events").select("*").eq("event_id", event_id).limit(1).execute()
        )
        if not existing:
            # Libérée entre l'insert et la lecture: la relivraison suivante la reprendra
            return IN_PROGRESS
        if existing.get("status") == EVENT_DONE:
            return DUPLICATE

        cutoff = (now - timedelta(seconds=self.stale_after_seconds)).isoformat()
        taken = (
            self.db.table("processed_events")
            .update({"claimed_at": now.isoformat()})
            .eq("event_id", event_id)
            .eq("status", EVENT_PROCESSING)
            .lt("claimed_at", cutoff)
            .execute()
        )
        if taken.data:
            logger.warning("payments.repository.claim stale claim taken over event_id=%s", event_id)
            return CLAIMED
        return IN_PROGRESS

    def complete(self, event_id: str) -> None:
        (
            self.db.table("processed_events")
            .update({"status": EVENT_DONE, "processed_at": utc_now_iso()})
            .eq("event_id", event_id)
            .execute()
        )

    def release(self, event_id: str) -> None:
        """Libère la réservation pour qu'une relivraison soit retraitée."""
        self.db.table("processed_events").delete().eq("event_id", event_id).execute()
