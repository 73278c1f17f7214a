"""
Paystack REST client.

Every call returns a :class:`GatewayResponse` or raises:

* ``GatewayRejected`` when Paystack answers 4xx or ``status: false``.
  The message comes from Paystack and is safe to show to the user.
* ``GatewayUnavailable`` on transport errors, timeouts, 5xx and bodies
  that are not JSON. The caller sees a generic message; details are logged.

Request and response bodies are never logged in full because they carry
emails and phone numbers.
"""
import logging
from collections import namedtuple
from urllib.parse import quote

import requests
from flask import current_app

from errors import GatewayRejected, GatewayUnavailable, ServiceNotConfigured

logger = logging.getLogger(__name__)

GatewayResponse = namedtuple('GatewayResponse', ['status_code', 'message', 'data'])


class PaystackClient:
    def __init__(self, secret_key, base_url='https://api.paystack.co', timeout=30, session=None):
        self.secret_key = secret_key or ''
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config):
        return cls(
            config.get('PAYSTACK_SECRET_KEY'),
            base_url=config.get('PAYSTACK_BASE_URL', 'https://api.paystack.co'),
            timeout=config.get('PAYSTACK_TIMEOUT', 30),
        )

    @property
    def configured(self):
        return bool(self.secret_key)

    # -- endpoints ----------------------------------------------------------

    def initialize_transaction(self, payload, idempotency_key=None):
        return self._request('POST', '/transaction/initialize', payload, idempotency_key)

    def charge(self, payload, idempotency_key=None):
        return self._request('POST', '/charge', payload, idempotency_key)

    def verify_transaction(self, reference):
        return self._request('GET', f"/transaction/verify/{quote(reference, safe='')}")

    def create_split(self, payload):
        return self._request('POST', '/split', payload)

    def list_splits(self, params=None):
        return self._request('GET', '/split', params=params)

    def create_subaccount(self, payload):
        return self._request('POST', '/subaccount', payload)

    # -- transport ----------------------------------------------------------

    def _request(self, method, path, payload=None, idempotency_key=None, params=None):
        if not self.configured:
            raise ServiceNotConfigured('Payment service is not configured')

        headers = {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(
                method, url, json=payload, params=params, headers=headers, timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error("Paystack %s %s timed out after %ss", method, path, self.timeout)
            raise GatewayUnavailable() from None
        except requests.RequestException as exc:
            logger.error("Paystack %s %s failed: %s", method, path, exc.__class__.__name__)
            raise GatewayUnavailable() from None

        return self._parse(method, path, response)

    @staticmethod
    def _parse(method, path, response):
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            logger.error(
                "Paystack %s %s returned a non-JSON body (HTTP %s)",
                method, path, response.status_code,
            )
            raise GatewayUnavailable()

        data = body.get('data')
        message = body.get('message') or ''

        if 400 <= response.status_code < 500 or (response.ok and body.get('status') is False):
            detail = message
            if isinstance(data, dict):
                detail = data.get('message') or data.get('gateway_response') or message
            logger.warning(
                "Paystack rejected %s %s (HTTP %s): %s", method, path, response.status_code, detail
            )
            raise GatewayRejected(detail or None)

        if not response.ok:
            logger.error("Paystack %s %s returned HTTP %s", method, path, response.status_code)
            raise GatewayUnavailable()

        return GatewayResponse(response.status_code, message, data if data is not None else {})


def get_paystack():
    """The client installed on the current app by server.create_app()."""
    client = current_app.extensions.get('paystack')
    if client is None or not client.configured:
        logger.critical("Paystack is not configured (PAYSTACK_SECRET_KEY missing)")
        raise ServiceNotConfigured('Payment service is not configured')
    return client
