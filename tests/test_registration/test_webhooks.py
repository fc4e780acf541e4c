"""Tests for Chapa webhook handling in django_expo.registration.webhooks."""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from django.core import mail
from django.urls import reverse

from django_expo.registration.chapa_client import ChapaClient, VerifyResult
from django_expo.registration.chapa_utils import compute_signature
from django_expo.registration.exceptions import VerificationError
from django_expo.registration.models import Ticket, TicketNotification, TicketType
from django_expo.registration.webhooks import extract_reference

WEBHOOK_SECRET = "whsec_expo_test"
SIGNED_SETTINGS = {
    "site_url": "https://expo.example.com",
    "chapa": {"secret_key": "CHASECK_TEST-abc123", "webhook_secret": WEBHOOK_SECRET},
}


# -- Helpers ------------------------------------------------------------------


def _verify_result(*, status="success"):
    return VerifyResult.from_api(
        {"status": "success", "data": {"status": status, "reference": "APchapa123", "amount": "1000.00"}}
    )


def _make_batch(ticket_type, *, reference, chapa_ref=""):
    return [
        Ticket.objects.create(
            ticket_type=ticket_type,
            full_name="Abebe Kebede",
            email="abebe@example.com",
            phone="+251911000000",
            amount=ticket_type.price,
            currency=ticket_type.currency,
            reference=reference,
            chapa_ref=chapa_ref,
        )
        for _ in range(2)
    ]


def _post(client, url, payload, **headers):
    return client.post(url, data=json.dumps(payload), content_type="application/json", headers=headers)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def ticket_type(db):
    return TicketType.objects.create(name="General Admission", price=Decimal("500.00"), currency="ETB")


@pytest.fixture
def url():
    return reverse("registration:chapa-webhook")


@pytest.fixture
def gateway():
    chapa_client = MagicMock(spec=ChapaClient)
    chapa_client.verify.return_value = _verify_result()
    with patch("django_expo.registration.services.reconciliation.ChapaClient", return_value=chapa_client):
        yield chapa_client


@pytest.fixture
def batch(ticket_type):
    return _make_batch(ticket_type, reference="ref-hook")


# -- extract_reference --------------------------------------------------------


@pytest.mark.unit
class TestExtractReference:
    def test_nested_tx_ref(self):
        assert extract_reference({"data": {"tx_ref": "abc", "reference": "APx"}}) == "abc"

    def test_flat_tx_ref(self):
        assert extract_reference({"tx_ref": " abc ", "reference": "APx"}) == "abc"

    def test_falls_back_to_chapa_reference(self):
        assert extract_reference({"data": {"reference": "APx"}}) == "APx"
        assert extract_reference({"reference": "APx"}) == "APx"

    @pytest.mark.parametrize("payload", [{}, {"data": "oops"}, {"tx_ref": ""}, {"tx_ref": 42}])
    def test_missing_reference(self, payload):
        assert extract_reference(payload) == ""


# -- chapa_webhook ------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.django_db
class TestChapaWebhook:
    def test_paid_delivery_marks_batch_and_sends_emails(
        self, client, url, batch, gateway, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            response = _post(client, url, {"tx_ref": "ref-hook", "status": "success"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert Ticket.objects.filter(reference="ref-hook", status=Ticket.Status.PAID).count() == 2
        assert len(mail.outbox) == 2
        gateway.verify.assert_called_once_with("ref-hook")

    def test_duplicate_delivery_sends_no_more_emails(
        self, client, url, batch, gateway, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            _post(client, url, {"tx_ref": "ref-hook"})
        tokens = dict(Ticket.objects.values_list("pk", "qr_token"))

        with django_capture_on_commit_callbacks(execute=True):
            response = _post(client, url, {"tx_ref": "ref-hook"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert len(mail.outbox) == 2
        assert dict(Ticket.objects.values_list("pk", "qr_token")) == tokens
        assert TicketNotification.objects.count() == 2

    def test_claimed_status_is_not_trusted(self, client, url, batch, gateway):
        gateway.verify.return_value = _verify_result(status="failed")

        response = _post(client, url, {"data": {"tx_ref": "ref-hook", "status": "success"}})

        assert response.status_code == 200
        assert response.json() == {"ok": False, "error": "payment not successful"}
        assert not Ticket.objects.filter(status=Ticket.Status.PAID).exists()

    def test_form_encoded_delivery(self, client, url, batch, gateway):
        response = client.post(url, data={"tx_ref": "ref-hook", "status": "success"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_chapa_reference_resolves_batch(self, client, url, ticket_type, gateway):
        _make_batch(ticket_type, reference="ref-local", chapa_ref="APchapa123")

        response = _post(client, url, {"reference": "APchapa123"})

        assert response.status_code == 200
        gateway.verify.assert_called_once_with("ref-local")

    def test_missing_reference(self, client, url, gateway):
        response = _post(client, url, {"status": "success"})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "missing reference"}
        gateway.verify.assert_not_called()

    def test_unknown_reference(self, client, url, gateway, db):
        response = _post(client, url, {"tx_ref": "does-not-exist"})

        assert response.status_code == 404
        assert response.json() == {"ok": False, "error": "not found"}

    def test_verification_failure_asks_for_retry(self, client, url, batch, gateway):
        gateway.verify.side_effect = VerificationError("read timeout")

        response = _post(client, url, {"tx_ref": "ref-hook"})

        assert response.status_code == 503
        assert response.json() == {"ok": False, "error": "verify failed"}
        assert Ticket.objects.filter(status=Ticket.Status.PENDING).count() == 2

    def test_unexpected_error_is_opaque(self, client, url, batch, gateway):
        gateway.verify.side_effect = RuntimeError("database password is hunter2")

        response = _post(client, url, {"tx_ref": "ref-hook"})

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "server error"}

    def test_get_not_allowed(self, client, url):
        assert client.get(url).status_code == 405


@pytest.mark.integration
@pytest.mark.django_db
class TestChapaWebhookSignature:
    @pytest.fixture(autouse=True)
    def _webhook_secret(self, settings):
        settings.DJANGO_EXPO = SIGNED_SETTINGS

    def test_valid_body_signature(self, client, url, batch, gateway):
        body = json.dumps({"tx_ref": "ref-hook"})
        signature = compute_signature(WEBHOOK_SECRET, body.encode())

        response = client.post(
            url, data=body, content_type="application/json", headers={"x-chapa-signature": signature}
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_valid_secret_signature(self, client, url, batch, gateway):
        signature = compute_signature(WEBHOOK_SECRET, WEBHOOK_SECRET.encode())

        response = _post(client, url, {"tx_ref": "ref-hook"}, **{"chapa-signature": signature})

        assert response.status_code == 200

    def test_invalid_signature(self, client, url, batch, gateway):
        response = _post(client, url, {"tx_ref": "ref-hook"}, **{"x-chapa-signature": "deadbeef"})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "invalid signature"}
        gateway.verify.assert_not_called()

    def test_missing_signature(self, client, url, batch, gateway):
        response = _post(client, url, {"tx_ref": "ref-hook"})

        assert response.status_code == 400
        assert not Ticket.objects.filter(status=Ticket.Status.PAID).exists()
