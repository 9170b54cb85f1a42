import time
import logging
from typing import Any, Callable, Dict, Optional, Union

import stripe
from fastapi import Depends

from bizcard_svc.config import Settings, get_settings

logger = logging.getLogger(__name__)


class StripeIntegrationError(Exception):
    pass


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Turn a StripeObject (or a plain dict from a test double) into a plain dict."""
    if obj is None:
        return {}
    for attr in ('to_dict_recursive', 'to_dict'):
        converter = getattr(obj, attr, None)
        if callable(converter):
            return converter()
    return dict(obj)


class StripeIntegration:
    """
    This class encapsulates the calls this service makes to Stripe: creating
    hosted checkout sessions, looking up subscriptions, and verifying webhook
    signatures. Connection errors are retried a bounded number of times.

    The API key is passed on every call instead of being set on the global
    ``stripe`` module, so several keys can coexist in one process.
    """

    def __init__(self, api_key: Optional[str], max_retries: int = 3, retry_delay: float = 1.0) -> None:
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _call(self, description: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if not self.api_key:
            raise StripeIntegrationError('Stripe secret key (STRIPE_SECRET_KEY) not configured.')
        attempt = 0
        while attempt < self.max_retries:
            try:
                return func(*args, api_key=self.api_key, **kwargs)
            except stripe.APIConnectionError as e:
                logger.error(f"Error during {description} (attempt {attempt + 1}): {e}", exc_info=True)
                attempt += 1
                time.sleep(self.retry_delay)
            except Exception as e:
                logger.error(f"General error during {description}: {e}", exc_info=True)
                raise
        raise StripeIntegrationError(f'Failed {description} after {self.max_retries} attempts.')

    def create_checkout_session(
        self,
        user_id: str,
        email: Optional[str],
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, Any]:
        """
        Create a subscription-mode hosted checkout session for one user.

        :param user_id: Auth provider user id, stored as ``client_reference_id``.
        :param email: Prefills the checkout form; omitted when empty.
        :param price_id: The single line item's price.
        :return: The created session as a dictionary (``url`` is the redirect).
        """
        params: Dict[str, Any] = {
            'mode': 'subscription',
            'client_reference_id': user_id,
            'line_items': [{'price': price_id, 'quantity': 1}],
            'success_url': success_url,
            'cancel_url': cancel_url,
        }
        if email:
            params['customer_email'] = email
        session = self._call('checkout session creation', stripe.checkout.Session.create, **params)
        return _as_dict(session)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Retrieve the full subscription object for its status and billing period.

        :raises ValueError: if subscription_id is empty.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError('subscription_id cannot be empty')
        subscription = self._call('subscription retrieval', stripe.Subscription.retrieve, subscription_id)
        return _as_dict(subscription)

    @staticmethod
    def verify_webhook(payload: Union[str, bytes], sig_header: str, endpoint_secret: str) -> None:
        """
        Check the Stripe-Signature header against the raw request body.

        The payload must be the bytes exactly as received. Re-serialising a
        parsed body changes it and the signature will not match.

        :raises stripe.SignatureVerificationError: on a bad, stale or malformed signature.
        """
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        try:
            stripe.WebhookSignature.verify_header(
                payload, sig_header, endpoint_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f'Webhook signature verification failed: {e}')
            raise


def get_stripe_integration(settings: Settings = Depends(get_settings)) -> StripeIntegration:
    return StripeIntegration(api_key=settings.stripe_secret_key)
