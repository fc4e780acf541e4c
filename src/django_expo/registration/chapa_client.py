"""HTTP client for the Chapa hosted-checkout API.

Provides :class:`ChapaClient` with the two calls the ticket workflow needs:
initializing a hosted checkout and verifying a transaction by reference.
Responses are returned as typed dataclasses (:class:`InitializeResult`,
:class:`VerifyResult`) rather than raw dicts.

The client never retries on its own; callers decide the retry policy.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from urllib.parse import quote

import httpx
from django.core.exceptions import ImproperlyConfigured

from django_expo.registration.chapa_utils import format_amount_for_api, is_paid_status, is_success, obfuscate_key
from django_expo.registration.exceptions import GatewayError, VerificationError
from django_expo.settings import ChapaConfig, get_config

logger = logging.getLogger(__name__)


def _data_section(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True, slots=True)
class InitializeResult:
    """Outcome of a ``transaction/initialize`` call.

    Attributes:
        status: The envelope status reported by Chapa (``"success"`` or ``"failed"``).
        checkout_url: The hosted payment page, empty when Chapa returned none.
        provider_txn_id: Chapa's own transaction identifier, when provided.
        raw: The decoded response body.
    """

    status: str
    checkout_url: str = ""
    provider_txn_id: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when Chapa accepted the transaction and returned a checkout URL."""
        return is_success(self.status) and bool(self.checkout_url)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "InitializeResult":
        """Construct an ``InitializeResult`` from the decoded response body."""
        data = _data_section(payload)
        return cls(
            status=str(payload.get("status") or ""),
            checkout_url=str(data.get("checkout_url") or ""),
            provider_txn_id=str(data.get("id") or data.get("reference") or ""),
            raw=payload,
        )


@dataclass(frozen=True, slots=True)
class VerifyResult:
    """Outcome of a ``transaction/verify`` call.

    Attributes:
        status: The transaction status inside ``data`` (e.g. ``"success"``, ``"pending"``).
        paid: Whether the payment is confirmed.
        provider_txn_id: Chapa's transaction identifier for the payment.
        raw: The decoded response body.
    """

    status: str
    paid: bool
    provider_txn_id: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def data(self) -> dict[str, Any]:
        """The ``data`` section of the verification response."""
        return _data_section(self.raw)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "VerifyResult":
        """Construct a ``VerifyResult`` from the decoded response body."""
        data = _data_section(payload)
        status = str(data.get("status") or "")
        return cls(
            status=status,
            paid=is_paid_status(status),
            provider_txn_id=str(data.get("id") or data.get("reference") or ""),
            raw=payload,
        )


class ChapaClient:
    """Client for the Chapa transaction API.

    Args:
        config: Gateway settings; defaults to ``get_config().chapa``.
        transport: Optional ``httpx`` transport, used by tests to stub the API.

    Raises:
        ImproperlyConfigured: If no Chapa secret key is configured.
    """

    def __init__(self, config: ChapaConfig | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self.config = config or get_config().chapa
        if not self.config.secret_key:
            msg = "Chapa secret key is not configured. Set DJANGO_EXPO['chapa']['secret_key']."
            raise ImproperlyConfigured(msg)
        self.base_url = self.config.base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {self.config.secret_key}",
            "Accept": "application/json",
        }
        self._transport = transport
        logger.debug("Initialized ChapaClient with key %s", obfuscate_key(self.config.secret_key))

    def _client(self, timeout: float) -> httpx.Client:
        kwargs: dict[str, Any] = {"timeout": timeout, "headers": self.headers}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        error_class: type[GatewayError],
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON body.

        Raises:
            GatewayError: ``error_class`` on connection failures, non-2xx
                responses, or a body that is not a JSON object.
        """
        with self._client(timeout) as client:
            try:
                response = client.request(method, url, json=json)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                msg = f"Chapa API request failed: {exc.response.status_code} for URL {exc.request.url}"
                raise error_class(msg) from exc
            except httpx.RequestError as exc:
                msg = f"Chapa API connection error for URL {url}: {exc}"
                raise error_class(msg) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"Chapa API returned invalid JSON for URL {url}"
            raise error_class(msg) from exc
        if not isinstance(payload, dict):
            msg = f"Chapa API returned an unexpected payload for URL {url}"
            raise error_class(msg)
        return payload

    def initialize(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_email: str,
        payer_name: str,
        redirect_url: str,
        callback_url: str,
        tx_ref: str,
        phone: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        """Start a hosted checkout for ``amount``.

        Args:
            amount: Total to charge in major currency units.
            currency: ISO currency code, e.g. ``"ETB"``.
            payer_email: The buyer's email address.
            payer_name: The buyer's full name; split into first/last name.
            redirect_url: Where Chapa sends the browser after payment.
            callback_url: Server-to-server webhook target.
            tx_ref: Our reference for the transaction, later used to verify it.
            phone: The buyer's phone number.
            metadata: Extra key/values echoed back by Chapa.

        Returns:
            The parsed initialize response. Check :attr:`InitializeResult.ok`.

        Raises:
            GatewayError: On transport failure or a malformed response.
        """
        first_name, _, last_name = payer_name.strip().partition(" ")
        payload: dict[str, Any] = {
            "amount": format_amount_for_api(amount),
            "currency": currency,
            "email": payer_email,
            "first_name": first_name,
            "last_name": last_name.strip(),
            "tx_ref": tx_ref,
            "callback_url": callback_url,
            "return_url": redirect_url,
            "meta": metadata or {},
        }
        if phone:
            payload["phone_number"] = phone

        url = f"{self.base_url}/v1/transaction/initialize"
        logger.debug("Initializing Chapa transaction %s for %s %s", tx_ref, payload["amount"], currency)
        body = self._request(
            "POST",
            url,
            json=payload,
            timeout=self.config.initialize_timeout,
            error_class=GatewayError,
        )
        return InitializeResult.from_api(body)

    def verify(self, reference: str) -> VerifyResult:
        """Ask Chapa for the authoritative status of a transaction.

        Args:
            reference: The ``tx_ref`` supplied at initialization.

        Returns:
            The parsed verification result.

        Raises:
            VerificationError: On transport failure, a non-2xx response, a
                malformed body, or an envelope status other than ``success``.
        """
        url = f"{self.base_url}/v1/transaction/verify/{quote(reference, safe='')}"
        body = self._request("GET", url, timeout=self.config.verify_timeout, error_class=VerificationError)
        if not is_success(body.get("status")):
            msg = f"Chapa could not verify transaction {reference}: {body.get('message', 'no message')}"
            raise VerificationError(msg, reference=reference)
        return VerifyResult.from_api(body)
