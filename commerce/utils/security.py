import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request

import commerce.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"
ROLES = ("buyer", "vendor", "admin")


def determine_role(metadata: Optional[Dict[str, Any]]) -> str:
    role = str((metadata or {}).get("role", "")).lower()
    return role if role in ROLES else "buyer"


def _extract_token(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)


def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """
    Normalise l'utilisateur issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, role, vendor_id, metadata, token}
    - role et vendor_id viennent de app_metadata (écrit côté serveur uniquement);
      user_metadata, modifiable par l'utilisateur, n'est exposé que comme profil
    """
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None)
    claims = getattr(user, "app_metadata", None) or {}
    metadata = getattr(user, "user_metadata", None) or {}
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "role": determine_role(claims),
        "vendor_id": claims.get("vendor_id"),
        "metadata": metadata,
        "token": access_token,
    }


def get_current_user(request: Request) -> Dict[str, Any]:
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    try:
        user = get_user_from_token(token)
    except Exception:
        logger.info("security.get_current_user token rejected")
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user


def require_vendor(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Vendeur (avec vendor_id) ou admin."""
    if user.get("role") == "admin":
        return user
    if user.get("role") != "vendor" or not user.get("vendor_id"):
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user
