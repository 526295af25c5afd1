"""
Mercado Pago Service for restaurant checkouts.
Handles interaction with Mercado Pago API for Preferences and Payments,
always using the credentials of the restaurant that receives the money.
"""

import logging
from typing import Dict, Any, List, Optional
from flask import current_app, has_app_context
import mercadopago  # type: ignore
import requests

from qrorder.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class MercadoPagoService:
    """Service to interact with Mercado Pago API on behalf of one restaurant."""

    def __init__(self, access_token: Optional[str]):
        """Initialize SDK with the restaurant access token."""
        if not access_token:
            raise ConfigurationError("Mercado Pago access token not configured for this restaurant")
        self.token = access_token
        self.sdk = mercadopago.SDK(self.token)

    def _unwrap(self, response: Dict[str, Any], expected: tuple, action: str) -> Dict[str, Any]:
        """Return the SDK body or raise UpstreamError on an unexpected status/shape."""
        if not isinstance(response, dict) or 'status' not in response:
            logger.error(f"[MP] Unexpected response shape while {action}: {response!r}")
            raise UpstreamError(f"Unexpected Mercado Pago response while {action}")

        status = response.get('status')
        body = response.get('response')
        if status not in expected or not isinstance(body, dict):
            logger.error(f"[MP] Error while {action}: status={status} body={body}")
            raise UpstreamError(
                f"Mercado Pago error while {action}",
                payload={'upstream_status': status},
                upstream_status=status,
            )
        return body

    def create_preference(self, preference_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a checkout preference.

        Returns:
            dict: The API body (id, init_point, sandbox_init_point, collector_id).
        """
        try:
            response = self.sdk.preference().create(preference_data)
        except requests.RequestException as e:
            logger.error(f"[MP] Network error creating preference: {e}")
            raise UpstreamError("Mercado Pago unreachable while creating preference") from e

        body = self._unwrap(response, (200, 201), 'creating preference')
        if not body.get('id'):
            raise UpstreamError("Mercado Pago preference response without id")

        logger.info(
            f"[MP] Preference created: {body['id']} "
            f"(external_reference={preference_data.get('external_reference')})"
        )
        return body

    def get_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a payment by id.

        Returns None when the processor answers 404 (unknown payment).
        """
        try:
            response = self.sdk.payment().get(payment_id)
        except requests.RequestException as e:
            logger.error(f"[MP] Network error fetching payment {payment_id}: {e}")
            raise UpstreamError("Mercado Pago unreachable while fetching payment") from e

        if isinstance(response, dict) and response.get('status') == 404:
            logger.info(f"[MP] Payment {payment_id} not found")
            return None

        return self._unwrap(response, (200,), f'fetching payment {payment_id}')

    def search_payments_by_reference(self, external_reference: str) -> List[Dict[str, Any]]:
        """
        Search payments by external_reference, newest first.

        The window is bounded by MP_PAYMENT_SEARCH_WINDOW (default last 7 days).
        """
        begin_date = 'NOW-7DAYS'
        if has_app_context():
            begin_date = current_app.config.get('MP_PAYMENT_SEARCH_WINDOW', begin_date)

        filters = {
            'external_reference': external_reference,
            'sort': 'date_created',
            'criteria': 'desc',
            'range': 'date_created',
            'begin_date': begin_date,
            'end_date': 'NOW',
        }

        try:
            response = self.sdk.payment().search(filters)
        except requests.RequestException as e:
            logger.error(f"[MP] Network error searching payments for {external_reference}: {e}")
            raise UpstreamError("Mercado Pago unreachable while searching payments") from e

        body = self._unwrap(response, (200,), f'searching payments for {external_reference}')
        results = body.get('results') or []
        logger.info(f"[MP] Search for {external_reference} returned {len(results)} payment(s)")
        return results
