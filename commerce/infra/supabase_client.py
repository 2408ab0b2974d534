from datetime import datetime, timezone
from typing import Any, Dict, Optional
from supabase import create_client, Client
from commerce.config import SUPABASE_URL, SUPABASE_ANON, SUPABASE_SERVICE_KEY

_supabase: Optional[Client] = None
_service_supabase: Optional[Client] = None

def get_supabase() -> Client:
    """Client 'anon': utilisé pour résoudre les jetons (auth.get_user)."""
    global _supabase
    if _supabase is None:
        _supabase = create_client(SUPABASE_URL, SUPABASE_ANON)
    return _supabase

def get_service_supabase() -> Client:
    """
    Client service-role (bypass RLS). Toutes les écritures du ledger passent par lui:
    le webhook Stripe n'a pas de jeton utilisateur.
    """
    global _service_supabase
    if not SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_KEY manquant pour get_service_supabase()")
    if _service_supabase is None:
        _service_supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _service_supabase


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def first_row(res) -> Optional[Dict[str, Any]]:
    """Première ligne d'une réponse PostgREST (data liste ou objet), None si vide."""
    rows = getattr(res, "data", None) or []
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows


class SupabaseRepository:
    """Base des repositories: client injecté (tests) ou client service-role résolu à l'appel."""

    def __init__(self, client=None):
        self._client = client

    @property
    def db(self) -> Client:
        return self._client or get_service_supabase()
