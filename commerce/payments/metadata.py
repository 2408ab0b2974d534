"""
Sérialisation/désérialisation des métadonnées Stripe de la session Checkout.

Stripe limite chaque valeur à 500 caractères et l'objet à 50 clés: la liste des
articles (JSON) est découpée en items_0, items_1, ... et recollée à la lecture,
au lieu d'être tronquée.
"""
import json
from typing import Any, Dict, List

from commerce.errors import ValidationError

STRIPE_VALUE_MAX = 500
STRIPE_MAX_KEYS = 50
ITEMS_PREFIX = "items_"


def _items_payload(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "productId": str(it.get("product_id") or ""),
            "vendorId": str(it.get("vendor_id") or ""),
            "listingId": str(it.get("listing_id") or ""),
            "quantity": int(it.get("quantity") or 0),
            "price": str(it.get("unit_price") or it.get("price") or "0"),
        }
        for it in items or []
    ]


def chunk(value: str, size: int = STRIPE_VALUE_MAX) -> List[str]:
    return [value[i:i + size] for i in range(0, len(value), size)] or [""]


# module commerce.payments.metadata
def build_metadata(order: Dict[str, Any], payment: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, str]:
    """
    Construit les métadonnées de session: identifiants de corrélation + articles.
    - orderId, paymentId, userId: requis par le webhook de réconciliation
    - items: JSON compact découpé sur plusieurs clés
    """
    meta = {
        "orderId": str(order["id"]),
        "paymentId": str(payment["id"]),
        "userId": str(order["buyer_id"]),
        "shippingAddressId": str(order.get("shipping_address_id") or ""),
        "totalAmount": str(order.get("total_amount") or ""),
        "paymentMode": str(order.get("payment_mode") or ""),
    }
    encoded = json.dumps(_items_payload(items), separators=(",", ":"))
    parts = chunk(encoded)
    if len(meta) + len(parts) > STRIPE_MAX_KEYS:
        raise ValidationError("Trop d'articles pour une session de paiement")
    for i, part in enumerate(parts):
        meta[f"{ITEMS_PREFIX}{i}"] = part
    return meta


def extract_items(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Recolle items_0..items_n (ordre numérique) et décode le JSON. [] si absent ou illisible."""
    keys = [k for k in (metadata or {}) if k.startswith(ITEMS_PREFIX) and k[len(ITEMS_PREFIX):].isdigit()]
    if not keys:
        return []
    keys.sort(key=lambda k: int(k[len(ITEMS_PREFIX):]))
    try:
        return json.loads("".join(str(metadata[k]) for k in keys))
    except ValueError:
        return []


def extract_metadata(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extrait les métadonnées depuis un event Stripe (webhook).
    - Attend event.data.object.metadata
    - Retourne {orderId, paymentId, userId, ..., items: [...]}
    """
    data_obj = (event or {}).get("data", {}).get("object", {}) if isinstance(event, dict) else {}
    meta = dict(data_obj.get("metadata") or {})
    result = {k: v for k, v in meta.items() if not k.startswith(ITEMS_PREFIX)}
    result["items"] = extract_items(meta)
    return result
