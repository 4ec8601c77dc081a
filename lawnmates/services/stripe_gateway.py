"""
Stripe calls used by the payment coordinator.

Every call is bounded by STRIPE_TIMEOUT_SECONDS and provider failures are
raised as ExternalServiceError. Without a secret key the gateway runs in
development mode and fabricates pi_dev_/tr_dev_/re_dev_ references.
"""
import json
import logging
import uuid

from lawnmates.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)


def _dev_id(prefix):
    return '{}_dev_{}'.format(prefix, uuid.uuid4().hex[:12])


class PaymentGateway:

    def __init__(self, secret_key='', webhook_secret='', currency='cad', timeout=10):
        self.secret_key = secret_key or ''
        self.webhook_secret = webhook_secret or ''
        self.currency = currency
        self.timeout = timeout
        self._stripe = None

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get('STRIPE_SECRET_KEY', ''),
            webhook_secret=config.get('STRIPE_WEBHOOK_SECRET', ''),
            currency=config.get('STRIPE_CURRENCY', 'cad'),
            timeout=config.get('STRIPE_TIMEOUT_SECONDS', 10),
        )

    @property
    def dev_mode(self):
        return not self.secret_key

    def _get_stripe(self):
        if self._stripe is None:
            import stripe
            stripe.api_key = self.secret_key
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
            stripe.max_network_retries = 1
            self._stripe = stripe
        return self._stripe

    def _call(self, operation, fn, *args, **params):
        stripe = self._get_stripe()
        try:
            return fn(*args, **params)
        except stripe.APIConnectionError as e:
            logger.warning('Stripe %s unreachable: %s', operation, e)
            raise ExternalServiceError(
                'Payment provider unavailable, please retry', status_code=503, operation=operation,
            ) from e
        except stripe.StripeError as e:
            logger.error('Stripe %s failed: %s', operation, e)
            raise ExternalServiceError(
                'Payment provider error: {}'.format(e.user_message or 'request failed'),
                operation=operation,
            ) from e

    def create_intent(self, amount, metadata, customer_id=None, idempotency_key=None):
        """Create a PaymentIntent; returns (intent_id, client_secret)"""
        if self.dev_mode:
            intent_id = _dev_id('pi')
            return intent_id, '{}_secret_dev'.format(intent_id)

        stripe = self._get_stripe()
        params = {
            'amount': amount,
            'currency': self.currency,
            'metadata': metadata,
            'automatic_payment_methods': {'enabled': True},
        }
        if customer_id:
            params['customer'] = customer_id
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        intent = self._call('create_intent', stripe.PaymentIntent.create, **params)
        return intent.id, intent.client_secret

    def intent_status(self, intent_id):
        if self.dev_mode:
            return 'succeeded'
        stripe = self._get_stripe()
        intent = self._call('retrieve_intent', stripe.PaymentIntent.retrieve, intent_id)
        return intent.status

    def cancel_intent(self, intent_id):
        if self.dev_mode or not intent_id:
            return
        stripe = self._get_stripe()
        self._call('cancel_intent', stripe.PaymentIntent.cancel, intent_id)

    def create_transfer(self, amount, destination, transfer_group, idempotency_key):
        """Pay out to a connected account; returns the transfer id"""
        if self.dev_mode:
            return _dev_id('tr')
        stripe = self._get_stripe()
        transfer = self._call(
            'create_transfer', stripe.Transfer.create,
            amount=amount,
            currency=self.currency,
            destination=destination,
            transfer_group=transfer_group,
            idempotency_key=idempotency_key,
        )
        return transfer.id

    def refund(self, intent_id, idempotency_key):
        """Refund the full intent; returns the refund id"""
        if self.dev_mode:
            return _dev_id('re')
        stripe = self._get_stripe()
        refund = self._call(
            'refund', stripe.Refund.create,
            payment_intent=intent_id,
            idempotency_key=idempotency_key,
        )
        return refund.id

    def ensure_customer(self, email, name=None, existing_id=None):
        if existing_id:
            return existing_id
        if self.dev_mode:
            return _dev_id('cus')
        stripe = self._get_stripe()
        customer = self._call('create_customer', stripe.Customer.create, email=email, name=name)
        return customer.id

    def construct_event(self, payload, sig_header):
        """Verify and parse a webhook payload into a dict.

        Payloads are only trusted unsigned in development mode; a live key
        without a webhook secret is a misconfiguration and nothing is parsed.
        """
        if self.dev_mode:
            # Dev mode -- parse without verification
            try:
                event = json.loads(payload)
            except ValueError as e:
                raise ValidationError('Invalid JSON', category='payment') from e
            if not isinstance(event, dict):
                raise ValidationError('Invalid payload', category='payment')
            return event

        if not self.webhook_secret:
            logger.error('Rejected webhook: STRIPE_WEBHOOK_SECRET is not configured')
            raise ExternalServiceError(
                'Webhook signing secret is not configured', status_code=503, operation='construct_event',
            )

        stripe = self._get_stripe()
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValidationError('Invalid signature', category='payment') from e
        except ValueError as e:
            raise ValidationError('Invalid payload', category='payment') from e
        return event.to_dict()
