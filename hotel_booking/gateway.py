import logging

import razorpay
import requests
from django.conf import settings

from .exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


class RazorpayGateway:
    """Thin adapter over the Razorpay orders API."""

    def __init__(self, key_id, key_secret, timeout=None):
        self.key_id = key_id
        self.key_secret = key_secret or ''
        self.timeout = timeout
        self._client = None

    @property
    def configured(self):
        return bool(self.key_id and self.key_secret)

    @property
    def client(self):
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_order(self, amount_minor_units, currency, receipt, notes):
        if not self.configured:
            logger.error('Razorpay credentials are not set')
            raise GatewayUnavailable()

        options = {
            'amount': int(amount_minor_units),
            'currency': currency,
            'receipt': receipt,
            'notes': notes,
        }
        try:
            if self.timeout:
                order = self.client.order.create(data=options, timeout=self.timeout)
            else:
                order = self.client.order.create(data=options)
        except (razorpay.errors.BadRequestError,
                razorpay.errors.GatewayError,
                razorpay.errors.ServerError,
                requests.RequestException) as exc:
            logger.exception('Razorpay order creation failed for receipt %s', receipt)
            raise GatewayUnavailable() from exc

        logger.info('Razorpay order %s created for receipt %s', order.get('id'), receipt)
        return order

    def verify_signature(self, order_id, payment_id, signature):
        """Check the checkout callback signature (HMAC-SHA256 of ``order_id|payment_id``)."""
        if not self.key_secret or not signature:
            return False
        signature = str(signature)
        # The SDK compares str digests, which rejects non-ASCII input with TypeError
        if not signature.isascii():
            return False

        try:
            self.client.utility.verify_payment_signature({
                'razorpay_order_id': order_id,
                'razorpay_payment_id': payment_id,
                'razorpay_signature': signature,
            })
        except razorpay.errors.SignatureVerificationError:
            return False
        return True


def get_gateway():
    return RazorpayGateway(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        timeout=settings.RAZORPAY_TIMEOUT,
    )
