"""Gabarits d'e-mails transactionnels."""
from html import escape
from typing import Any, Dict, List, Tuple


def order_confirmation(order: Dict[str, Any], items: List[Dict[str, Any]]) -> Tuple[str, str]:
    """Retourne (sujet, html) de l'e-mail de confirmation de commande."""
    order_id = str(order.get("id") or "")
    rows = "".join(
        "<tr><td>{}</td><td>{}</td><td>{}</td></tr>".format(
            escape(str(it.get("product_id") or "")),
            int(it.get("quantity") or 0),
            escape(str(it.get("total_price") or "")),
        )
        for it in items or []
    )
    address = order.get("shipping_address") or {}
    city = escape(str(address.get("city") or ""))
    html = (
        f"<h2>Merci pour votre commande</h2>"
        f"<p>Commande <strong>{escape(order_id)}</strong> confirmée.</p>"
        f"<table><tr><th>Produit</th><th>Qté</th><th>Total</th></tr>{rows}</table>"
        f"<p>Montant total: <strong>{escape(str(order.get('total_amount') or ''))}</strong></p>"
        f"<p>Livraison: {city}</p>"
    )
    return f"Confirmation de commande {order_id[:8]}", html
