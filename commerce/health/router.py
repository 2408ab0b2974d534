from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_root(request: Request):
    """Liveness + compteurs du chemin secondaire (e-mails/événements envoyés, échoués, ignorés)."""
    services = getattr(request.app.state, "services", None)
    dispatcher = getattr(services, "dispatcher", None)
    return {
        "ok": True,
        "rate_limit_enabled": getattr(request.app.state, "rate_limit_enabled", None),
        "notifications": dispatcher.stats() if dispatcher is not None else {},
    }
