import hashlib
import logging
import os
import time

from fastapi import HTTPException, Request, Response
from fastapi_limiter.depends import RateLimiter

from commerce.utils.security import COOKIE_NAME

logger = logging.getLogger(__name__)


def _user_key_from_request(req: Request) -> str:
    # Priorité: jeton (hashé) puis IP
    auth_header = req.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else req.cookies.get(COOKIE_NAME)
    path = req.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = req.client.host if req.client else "local"
    return f"ip:{ip}:{path}"


def optional_rate_limit(times: int, seconds: int):
    """
    Dépendance de rate limiting:
    - LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (dev/tests)
    - sinon fastapi-limiter (Redis) si le lifespan l'a initialisé
    - rate_limit_enabled=False: aucun contrôle
    """
    async def _dep(request: Request):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = _user_key_from_request(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Too Many Requests")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is not True:
            return

        async def _identifier(req: Request) -> str:
            return _user_key_from_request(req)

        try:
            limiter = RateLimiter(times=times, seconds=seconds, identifier=_identifier)
            return await limiter(request, Response())
        except HTTPException:
            raise
        except Exception:
            # Redis indisponible: pas de 429 en prod
            logger.warning("rate_limit backend unavailable path=%s", request.url.path)
            return
    return _dep
