"""
Typed view of Stripe webhook payloads.

Stripe sends a loosely typed envelope whose ``data.object`` changes shape with
the event type. Only ``checkout.session.completed`` is decoded; every other
type, and any payload that fails to decode, becomes an ``UnhandledEvent``.
Decoding never raises.
"""

import json
import logging
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = 'checkout.session.completed'


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    client_reference_id: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None

    @field_validator('client_reference_id', 'customer', 'subscription', mode='before')
    @classmethod
    def _plain_id_only(cls, value: Any) -> Optional[str]:
        # Expanded objects (dicts) or anything else that is not a bare id is dropped
        if isinstance(value, str) and value:
            return value
        return None


class CheckoutSessionCompleted(BaseModel):
    id: Optional[str] = None
    type: Literal['checkout.session.completed'] = CHECKOUT_SESSION_COMPLETED
    session: CheckoutSessionObject


class UnhandledEvent(BaseModel):
    id: Optional[str] = None
    type: str = ''


WebhookEvent = Union[CheckoutSessionCompleted, UnhandledEvent]


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_event(payload: Union[str, bytes]) -> WebhookEvent:
    """Decode an already verified webhook body."""
    try:
        raw = json.loads(payload)
    except ValueError:
        logger.warning("Webhook body is not valid JSON; treating as unhandled")
        return UnhandledEvent()
    if not isinstance(raw, dict):
        return UnhandledEvent()

    event_id = _str_or_none(raw.get('id'))
    event_type = _str_or_none(raw.get('type')) or ''

    if event_type != CHECKOUT_SESSION_COMPLETED:
        return UnhandledEvent(id=event_id, type=event_type)

    data = raw.get('data')
    obj = data.get('object') if isinstance(data, dict) else None
    try:
        session = CheckoutSessionObject.model_validate(obj)
    except ValidationError as e:
        logger.warning("Event %s: could not decode checkout session: %s", event_id, e)
        return UnhandledEvent(id=event_id, type=event_type)
    return CheckoutSessionCompleted(id=event_id, session=session)
