"""
Cache Redis du panier actif (clé cart:<user_id>).
Le cache n'est jamais source de vérité: toute erreur Redis est journalisée
et l'appelant relit la base.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from commerce.config import CART_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


def cart_key(user_id: str) -> str:
    return f"cart:{user_id}"


class CartCache:
    def __init__(self, client, ttl_seconds: int = CART_CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def get(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        try:
            raw = self.client.get(cart_key(user_id))
        except Exception:
            logger.exception("cart.cache.get failed user_id=%s", user_id)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cart.cache.get corrupted user_id=%s", user_id)
            return None

    def set(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        # Un panier vide n'est pas mis en cache
        if not items:
            return
        try:
            self.client.set(cart_key(user_id), json.dumps(items, default=str), ex=self.ttl_seconds)
        except Exception:
            logger.exception("cart.cache.set failed user_id=%s", user_id)

    def invalidate(self, user_id: str) -> None:
        try:
            self.client.delete(cart_key(user_id))
        except Exception:
            logger.exception("cart.cache.invalidate failed user_id=%s", user_id)
