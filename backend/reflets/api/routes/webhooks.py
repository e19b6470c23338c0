"""
Stripe Webhook Handler

Receives Stripe events and hands the raw body to the reconciler, which
verifies the signature, claims the event in the ledger and applies the
subscription transition.

Responses:
- 200 ``{"received": true}``: processed
- 200 ``{"received": true, "duplicate": true}``: already claimed
- 400: bad or missing signature
- 500: processing failed; Stripe redelivers and the failed ledger row is re-claimed
"""

import logging

from fastapi import APIRouter, Depends, Request

from reflets.api.dependencies import get_webhook_reconciler
from reflets.domain.reconciler import WebhookReconciler


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """Handle one Stripe webhook delivery."""
    # Signature is computed over the exact bytes Stripe sent
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    result = await reconciler.handle(payload, signature)
    return result.to_dict()
