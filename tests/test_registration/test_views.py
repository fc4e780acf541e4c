"""Tests for the JSON ticket endpoints and the single-entry API router."""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from django.core.exceptions import ValidationError
from django.urls import reverse

from django_expo.registration.api import ActionRegistry, registry
from django_expo.registration.chapa_client import ChapaClient, InitializeResult, VerifyResult
from django_expo.registration.exceptions import GatewayError, NotFoundError, VerificationError
from django_expo.registration.models import Ticket, TicketType
from django_expo.registration.views import error_response

CHECKOUT_CLIENT = "django_expo.registration.services.checkout.ChapaClient"
RECONCILIATION_CLIENT = "django_expo.registration.services.reconciliation.ChapaClient"


# -- Helpers ------------------------------------------------------------------


def _json(response):
    return json.loads(response.content)


def _verify_result(*, status="success"):
    return VerifyResult.from_api(
        {
            "status": "success",
            "message": "Payment details",
            "data": {"status": status, "reference": "APchapa123", "amount": "1000.00", "currency": "ETB"},
        }
    )


def _make_batch(ticket_type, *, reference, quantity=2, status=Ticket.Status.PENDING):
    return [
        Ticket.objects.create(
            ticket_type=ticket_type,
            full_name="Abebe Kebede",
            email="abebe@example.com",
            phone="+251911000000",
            status=status,
            amount=ticket_type.price,
            currency=ticket_type.currency,
            reference=reference,
        )
        for _ in range(quantity)
    ]


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def ticket_type(db):
    return TicketType.objects.create(name="General Admission", price=Decimal("500.00"), currency="ETB")


@pytest.fixture
def chapa_client():
    client = MagicMock(spec=ChapaClient)
    client.initialize.return_value = InitializeResult.from_api(
        {"status": "success", "data": {"checkout_url": "https://checkout.chapa.co/checkout/payment/abc"}}
    )
    client.verify.return_value = _verify_result()
    return client


@pytest.fixture
def gateway(chapa_client):
    with (
        patch(CHECKOUT_CLIENT, return_value=chapa_client),
        patch(RECONCILIATION_CLIENT, return_value=chapa_client),
    ):
        yield chapa_client


@pytest.fixture
def checkout_data(ticket_type):
    return {
        "ticket_type_id": ticket_type.pk,
        "full_name": "Abebe Kebede",
        "email": "abebe@example.com",
        "phone": "+251911000000",
        "quantity": 2,
    }


# -- error_response -----------------------------------------------------------


@pytest.mark.unit
class TestErrorResponse:
    def test_field_errors(self):
        response = error_response(ValidationError({"email": "A valid email address is required."}), action="create")
        assert response.status_code == 400
        assert _json(response) == {
            "ok": False,
            "error": "missing or invalid fields",
            "fields": {"email": "A valid email address is required."},
        }

    def test_plain_validation_error(self):
        response = error_response(ValidationError("reference required"), action="verify")
        assert response.status_code == 400
        assert _json(response) == {"ok": False, "error": "reference required"}

    @pytest.mark.parametrize(
        ("exc", "status", "message"),
        [
            (NotFoundError("gone"), 404, "not found"),
            (GatewayError("Chapa API connection error"), 502, "failed to initialize payment"),
            (VerificationError("timeout"), 503, "verify failed"),
        ],
        ids=["not-found", "gateway", "verify"],
    )
    def test_ticketing_errors(self, exc, status, message):
        response = error_response(exc, action="test")
        assert response.status_code == status
        assert _json(response) == {"ok": False, "error": message}

    def test_unexpected_errors_are_opaque(self):
        response = error_response(KeyError("secret detail"), action="test")
        assert response.status_code == 500
        assert _json(response) == {"ok": False, "error": "server error"}


# -- CheckoutView -------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.django_db
class TestCheckoutView:
    def test_json_checkout(self, client, gateway, checkout_data):
        response = client.post(reverse("registration:checkout"), data=checkout_data, content_type="application/json")

        assert response.status_code == 200
        body = _json(response)
        assert body["ok"] is True
        assert body["checkout_url"] == "https://checkout.chapa.co/checkout/payment/abc"
        assert Ticket.objects.filter(reference=body["reference"], status=Ticket.Status.PENDING).count() == 2

    def test_form_checkout(self, client, gateway, checkout_data):
        response = client.post(reverse("registration:checkout"), data=checkout_data)

        assert response.status_code == 200
        assert _json(response)["ok"] is True

    def test_invalid_input(self, client, gateway, checkout_data):
        checkout_data["quantity"] = 0
        checkout_data["email"] = ""

        response = client.post(reverse("registration:checkout"), data=checkout_data, content_type="application/json")

        assert response.status_code == 400
        body = _json(response)
        assert body["error"] == "missing or invalid fields"
        assert set(body["fields"]) == {"quantity", "email"}
        assert Ticket.objects.count() == 0

    def test_malformed_json(self, client, gateway, db):
        response = client.post(reverse("registration:checkout"), data="{not json", content_type="application/json")

        assert response.status_code == 400
        assert _json(response) == {"ok": False, "error": "malformed JSON body"}

    def test_unknown_ticket_type(self, client, gateway, checkout_data):
        checkout_data["ticket_type_id"] = 9999

        response = client.post(reverse("registration:checkout"), data=checkout_data, content_type="application/json")

        assert response.status_code == 404
        assert _json(response) == {"ok": False, "error": "not found"}

    def test_gateway_failure(self, client, gateway, checkout_data):
        gateway.initialize.side_effect = GatewayError("Chapa API connection error")

        response = client.post(reverse("registration:checkout"), data=checkout_data, content_type="application/json")

        assert response.status_code == 502
        assert _json(response) == {"ok": False, "error": "failed to initialize payment"}
        assert Ticket.objects.filter(status=Ticket.Status.PENDING).count() == 2

    def test_get_not_allowed(self, client, db):
        response = client.get(reverse("registration:checkout"))

        assert response.status_code == 405
        assert _json(response) == {"ok": False, "error": "method not allowed"}


# -- VerifyView ---------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.django_db
class TestVerifyView:
    def test_paid(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-v")

        response = client.get(reverse("registration:verify"), {"reference": "ref-v"})

        assert response.status_code == 200
        body = _json(response)
        assert body["ok"] is True
        assert body["data"]["status"] == "success"
        assert Ticket.objects.filter(reference="ref-v", status=Ticket.Status.PAID).count() == 2

    def test_browser_return_redirect(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-v")

        response = client.get(reverse("registration:verify"), {"status": "redirect", "reference": "ref-v"})

        assert response.status_code == 200
        assert _json(response)["ok"] is True

    def test_post(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-v")

        response = client.post(reverse("registration:verify"), {"reference": "ref-v"})

        assert response.status_code == 200
        assert _json(response)["ok"] is True

    def test_not_paid(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-v")
        gateway.verify.return_value = _verify_result(status="pending")

        response = client.get(reverse("registration:verify"), {"reference": "ref-v"})

        assert response.status_code == 200
        assert _json(response) == {"ok": False, "error": "payment not marked success"}

    def test_missing_reference(self, client, gateway, db):
        response = client.get(reverse("registration:verify"))

        assert response.status_code == 400
        assert _json(response) == {"ok": False, "error": "reference required"}

    def test_unknown_reference(self, client, gateway, db):
        response = client.get(reverse("registration:verify"), {"reference": "nope"})

        assert response.status_code == 404

    def test_verification_failure(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-v")
        gateway.verify.side_effect = VerificationError("timeout")

        response = client.get(reverse("registration:verify"), {"reference": "ref-v"})

        assert response.status_code == 503
        assert _json(response) == {"ok": False, "error": "verify failed"}


# -- QRView -------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.django_db
class TestQRView:
    def test_paid_ticket(self, client, ticket_type):
        ticket = _make_batch(ticket_type, reference="ref-q", quantity=1, status=Ticket.Status.PAID)[0]
        Ticket.objects.filter(pk=ticket.pk).update(qr_token="tok123")

        response = client.get(reverse("registration:qr"), {"token": "tok123"})

        assert response.status_code == 200
        body = _json(response)
        assert body["ok"] is True
        assert body["qr_url"].startswith("https://chart.googleapis.com/chart?")
        assert "tok123" in body["qr_url"]

    def test_missing_token(self, client, db):
        response = client.get(reverse("registration:qr"))

        assert response.status_code == 400
        assert _json(response) == {"ok": False, "error": "token required"}

    def test_unknown_token(self, client, db):
        response = client.get(reverse("registration:qr"), {"token": "nope"})

        assert response.status_code == 404
        assert _json(response) == {"ok": False, "error": "not found"}

    def test_unpaid_ticket_has_no_qr(self, client, ticket_type):
        ticket = _make_batch(ticket_type, reference="ref-q", quantity=1)[0]
        Ticket.objects.filter(pk=ticket.pk).update(qr_token="tok-pending")

        response = client.get(reverse("registration:qr"), {"token": "tok-pending"})

        assert response.status_code == 404


# -- API router ---------------------------------------------------------------


@pytest.mark.unit
class TestActionRegistry:
    def test_registered_actions(self):
        assert set(registry.keys()) == {
            ("tickets", "create"),
            ("tickets", "verify"),
            ("tickets", "webhook"),
            ("tickets", "qr"),
        }

    def test_lookup_is_case_insensitive(self):
        assert registry.get(" Tickets ", "CREATE") is registry.get("tickets", "create")

    def test_unknown_pair(self):
        assert registry.get("../settings", "create") is None
        assert registry.get("tickets", "delete") is None

    def test_register(self):
        local = ActionRegistry()
        view = object()
        local.register("tickets", "create", view)
        assert local.get("tickets", "create") is view
        assert local.keys() == [("tickets", "create")]


@pytest.mark.integration
@pytest.mark.django_db
class TestAPIRouter:
    def test_dispatches_create(self, client, gateway, checkout_data):
        response = client.post(
            f"{reverse('registration:api')}?target=tickets&action=create",
            data=checkout_data,
            content_type="application/json",
        )

        assert response.status_code == 200
        assert _json(response)["ok"] is True

    def test_dispatches_verify(self, client, gateway, ticket_type):
        _make_batch(ticket_type, reference="ref-api")

        response = client.get(
            reverse("registration:api"),
            {"target": "tickets", "action": "verify", "reference": "ref-api"},
        )

        assert response.status_code == 200
        assert _json(response)["ok"] is True

    def test_missing_target(self, client, db):
        response = client.get(reverse("registration:api"))

        assert response.status_code == 400
        assert _json(response) == {"ok": False, "error": "target required"}

    @pytest.mark.parametrize(
        ("target", "action"),
        [("tickets", "drop"), ("exhibitors", "create"), ("../../etc/passwd", "create")],
        ids=["unknown-action", "unknown-target", "path-like"],
    )
    def test_unknown_pairs_are_not_found(self, client, target, action, db):
        response = client.get(reverse("registration:api"), {"target": target, "action": action})

        assert response.status_code == 404
        assert _json(response) == {"ok": False, "error": "not found"}
