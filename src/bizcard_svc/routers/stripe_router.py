import logging

import stripe
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from bizcard_svc.auth import AuthError, AuthNotConfigured, SupabaseAuthClient, extract_access_token, get_auth_client
from bizcard_svc.config import Settings, get_settings
from bizcard_svc.events import parse_event
from bizcard_svc.models.base import DatastoreNotConfigured, SessionFactory, get_session_factory
from bizcard_svc.models.subscription import SubscriptionRecord
from bizcard_svc.plans import card_limit, plan_for_status
from bizcard_svc.stripe_event_processor import process_event
from bizcard_svc.stripe_integration import StripeIntegration, get_stripe_integration
from bizcard_svc.timeutils import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_failure(e: AuthError) -> PlainTextResponse:
    body = f"Auth error: {e.message}" if e.from_provider else "Unauthorized"
    return PlainTextResponse(body, status_code=status.HTTP_401_UNAUTHORIZED)


@router.post("/checkout")
def create_checkout(
    request: Request,
    settings: Settings = Depends(get_settings),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    try:
        user = auth_client.get_user(extract_access_token(request))
    except AuthError as e:
        return _auth_failure(e)
    except AuthNotConfigured as e:
        logger.error(e)
        return PlainTextResponse(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not settings.stripe_price_id:
        logger.error("STRIPE_PRICE_ID not configured")
        return PlainTextResponse("Stripe price not configured", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        session = stripe_integration.create_checkout_session(
            user_id=user.id,
            email=user.email,
            price_id=settings.stripe_price_id,
            success_url=settings.success_url,
            cancel_url=settings.cancel_url,
        )
    except Exception as e:
        logger.error(e, exc_info=True)
        return PlainTextResponse(f"Server Error: {e}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("Checkout session %s created for user %s", session.get("id"), user.id)
    return {"url": session.get("url")}


@router.post("/webhook")
async def process_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        return PlainTextResponse("Missing stripe-signature", status_code=status.HTTP_400_BAD_REQUEST)
    endpoint_secret = settings.stripe_webhook_secret
    if not endpoint_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return PlainTextResponse(
            "Webhook Error: signing secret not configured", status_code=status.HTTP_400_BAD_REQUEST
        )

    # Raw bytes, exactly as signed
    payload = await request.body()
    try:
        stripe_integration.verify_webhook(payload, sig_header, endpoint_secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        return PlainTextResponse(f"Webhook Error: {e}", status_code=status.HTTP_400_BAD_REQUEST)

    try:
        event = parse_event(payload)
        outcome = await run_in_threadpool(process_event, event, stripe_integration, session_factory)
    except DatastoreNotConfigured as e:
        logger.error(e)
        return PlainTextResponse("Datastore not configured", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as e:
        logger.error(e, exc_info=True)
        return PlainTextResponse(f"Server Error: {e}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("Webhook event %s (%s) %s", event.id, event.type, outcome)
    return PlainTextResponse("ok", status_code=status.HTTP_200_OK)


@router.get("/subscription")
def get_subscription_status(
    request: Request,
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    try:
        user = auth_client.get_user(extract_access_token(request))
    except AuthError as e:
        return _auth_failure(e)
    except AuthNotConfigured as e:
        logger.error(e)
        return PlainTextResponse(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    # Only authenticated callers reach the datastore
    with session_factory() as db:
        record = db.query(SubscriptionRecord).filter(SubscriptionRecord.user_id == user.id).first()
        record_status = record.status if record else None
        period_end = record.current_period_end if record else None
    plan = plan_for_status(record_status)
    return {
        "user_id": user.id,
        "status": record_status,
        "current_period_end": to_iso(period_end),
        "plan": plan,
        "card_limit": card_limit(plan),
    }
