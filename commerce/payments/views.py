import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from commerce.dependencies import get_gateway, get_reconciliation_handler
from commerce.payments.gateway import StripeGateway
from commerce.payments.reconciliation import ReconciliationHandler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments API"])


# module commerce.payments.views
@router.post("/stripe/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_gateway),
    handler: ReconciliationHandler = Depends(get_reconciliation_handler),
):
    """
    Webhook Stripe (Checkout): réconcilie checkout.session.completed.
    - Signature: vérifiée sur le corps brut (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Réponses: {"status": "ok"|"ignored"|"duplicate"}
    - Erreurs: 400 signature/métadonnées invalides ; 500 échec d'écriture (Stripe relivre)
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    event = gateway.verify_webhook_signature(payload, sig_header)
    result = await run_in_threadpool(handler.handle_event, event)
    logger.info("payments.webhook event_id=%s type=%s status=%s", event.get("id"), event.get("type"), result.get("status"))
    return JSONResponse(result)
