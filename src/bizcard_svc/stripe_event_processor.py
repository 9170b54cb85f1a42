import logging
from typing import Any, Dict, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from bizcard_svc.events import CheckoutSessionCompleted, WebhookEvent
from bizcard_svc.models.base import SessionFactory
from bizcard_svc.models.subscription import SubscriptionRecord
from bizcard_svc.stripe_integration import StripeIntegration
from bizcard_svc.timeutils import from_unix_timestamp, utcnow

logger = logging.getLogger(__name__)

IGNORED = 'ignored'
SKIPPED = 'skipped'
UPSERTED = 'upserted'

_UPSERT_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def _period_end(subscription: Dict[str, Any]) -> Optional[int]:
    value = subscription.get('current_period_end')
    if value:
        return value
    # Newer API versions only carry the period on subscription items
    items = (subscription.get('items') or {}).get('data') or []
    if items:
        return items[0].get('current_period_end')
    return None


def upsert_subscription(db: Session, values: Dict[str, Any]) -> None:
    """
    Insert or replace the subscription row for ``values['user_id']``.

    :raises Exception: on any write or commit failure, after rolling back.
    """
    insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
    try:
        if insert is not None:
            stmt = insert(SubscriptionRecord).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=['user_id'],
                set_={key: stmt.excluded[key] for key in values if key != 'user_id'},
            )
            db.execute(stmt)
        else:
            record = db.query(SubscriptionRecord).filter(SubscriptionRecord.user_id == values['user_id']).first()
            if record is None:
                record = SubscriptionRecord(user_id=values['user_id'])
            for key, value in values.items():
                setattr(record, key, value)
            db.add(record)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(e, exc_info=True)
        raise


def handle_checkout_completed(
    event: CheckoutSessionCompleted,
    stripe_integration: StripeIntegration,
    session_factory: SessionFactory,
) -> str:
    session = event.session
    user_id = session.client_reference_id
    customer_id = session.customer
    subscription_id = session.subscription

    if not (user_id and customer_id and subscription_id):
        logger.info(
            f"Event {event.id}: checkout session {session.id} is missing user, customer or subscription id. Skipping."
        )
        return SKIPPED

    subscription = stripe_integration.retrieve_subscription(subscription_id)
    values = {
        'user_id': user_id,
        'stripe_customer_id': customer_id,
        'stripe_subscription_id': subscription_id,
        'status': subscription.get('status'),
        'current_period_end': from_unix_timestamp(_period_end(subscription)),
        'updated_at': utcnow(),
    }

    with session_factory() as db:
        upsert_subscription(db, values)

    logger.info(
        f"Event {event.id}: subscription {subscription_id} for user {user_id} stored with status {values['status']}."
    )
    return UPSERTED


def process_event(
    event: WebhookEvent,
    stripe_integration: StripeIntegration,
    session_factory: SessionFactory,
) -> str:
    """
    Apply a verified Stripe event to the subscriptions table.

    :param event: Decoded webhook event.
    :param stripe_integration: Used to fetch the authoritative subscription.
    :param session_factory: Opens an admin session; only called when a write is due.
    :return: One of ``ignored``, ``skipped`` or ``upserted``.
    :raises Exception: on Stripe lookup or datastore failures, so the caller can answer 500.
    """
    if isinstance(event, CheckoutSessionCompleted):
        return handle_checkout_completed(event, stripe_integration, session_factory)

    logger.info(f"Unhandled event type: {event.type} for event {event.id}. No action taken.")
    return IGNORED
