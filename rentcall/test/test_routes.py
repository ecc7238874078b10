import asyncio
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId

from rentcall.auth.accounts import hash_password
from rentcall.core.config import settings
from rentcall.utils.exceptions import ProviderError

SEND_INVOICE = {
    "phoneNumbers": ["+1 809 555 1234"],
    "tenantName": "Ana",
    "invoicePeriod": "March 2024",
    "totalAmount": 400,
    "currency": "RD$",
    "dueDate": "31/03/2024",
    "invoiceUrl": "https://example.com/i/1",
    "locale": "en",
    "templateName": "rentcall",
}


class TestSendInvoice:
    def test_requires_authentication(self, test_client):
        response = test_client.post("/whatsapp/send-invoice", json=SEND_INVOICE)

        assert response.status_code == 401

    def test_dispatches_template(self, test_client, auth_headers, mock_provider):
        response = test_client.post("/whatsapp/send-invoice", json=SEND_INVOICE, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["suppressed"] is False
        assert data["summary"] == {"total": 1, "apiSuccess": 1, "linkFallback": 0}
        assert data["results"][0]["method"] == "api-template"
        assert data["results"][0]["messageId"] == "wamid.template"

    def test_zero_balance_is_suppressed(self, test_client, auth_headers, mock_provider):
        body = {**SEND_INVOICE, "totalAmount": 0}

        response = test_client.post("/whatsapp/send-invoice", json=body, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["suppressed"] is True
        assert data["reason"] == "no_balance_due"
        mock_provider.send_template.assert_not_awaited()

    @pytest.mark.parametrize("amount", ["undefined", None, "400"])
    def test_non_numeric_amount_rejected(self, test_client, auth_headers, amount):
        body = {**SEND_INVOICE, "totalAmount": amount}

        response = test_client.post("/whatsapp/send-invoice", json=body, headers=auth_headers)

        assert response.status_code == 422

    def test_link_fallback_hides_provider_payload(self, test_client, auth_headers, mock_provider):
        mock_provider.send_template.side_effect = ProviderError("Template not found or not approved", code="132000")
        mock_provider.send_text.side_effect = ProviderError("Access token expired or invalid", code="190")

        response = test_client.post("/whatsapp/send-invoice", json=SEND_INVOICE, headers=auth_headers)

        result = response.json()["results"][0]
        assert result["method"] == "client-link"
        assert result["whatsappUrl"].startswith("https://wa.me/18095551234?text=")
        assert result["errors"]["api-text"] == {"code": "190", "message": "Access token expired or invalid"}

    def test_invalid_phone(self, test_client, auth_headers):
        body = {**SEND_INVOICE, "phoneNumbers": ["12"]}

        response = test_client.post("/whatsapp/send-invoice", json=body, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["type"] == "validation_error"

    @pytest.mark.parametrize("period", ["", "   "])
    def test_blank_period_rejected(self, test_client, auth_headers, mock_provider, period):
        body = {**SEND_INVOICE, "invoicePeriod": period}

        response = test_client.post("/whatsapp/send-invoice", json=body, headers=auth_headers)

        assert response.status_code == 422
        mock_provider.send_template.assert_not_awaited()


class TestSendDocument:
    def test_links_only(self, test_client, auth_headers, mock_provider, tracker):
        body = {**SEND_INVOICE, "phoneNumbers": ["18095550001", "18095550002"], "locale": "es-CO"}

        data = test_client.post("/whatsapp/send-document", json=body, headers=auth_headers).json()

        assert data["summary"] == {"total": 2, "apiSuccess": 0, "linkFallback": 2}
        assert all(r["method"] == "client-link" for r in data["results"])
        assert all(r["errors"] == {} for r in data["results"])
        assert data["results"][0]["whatsappUrl"].startswith("https://wa.me/18095550001?text=")
        mock_provider.send_template.assert_not_awaited()
        mock_provider.send_text.assert_not_awaited()
        assert len(tracker) == 0

    def test_template_name_required(self, test_client, auth_headers):
        body = {k: v for k, v in SEND_INVOICE.items() if k != "templateName"}

        response = test_client.post("/whatsapp/send-document", json=body, headers=auth_headers)

        assert response.status_code == 422

    def test_unknown_template(self, test_client, auth_headers):
        body = {**SEND_INVOICE, "templateName": "birthday"}

        response = test_client.post("/whatsapp/send-document", json=body, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["type"] == "validation_error"

    def test_zero_balance_suppressed(self, test_client, auth_headers):
        body = {**SEND_INVOICE, "totalAmount": 0}

        data = test_client.post("/whatsapp/send-document", json=body, headers=auth_headers).json()

        assert data["suppressed"] is True


class TestSendMessage:
    def test_sent_through_api(self, test_client, auth_headers, mock_provider, tracker):
        body = {"phoneNumber": "+1 809 555 1234", "message": "Hola Ana", "recipientName": "Ana"}

        data = test_client.post("/whatsapp/send-message", json=body, headers=auth_headers).json()

        assert data["method"] == "api-text"
        assert data["messageId"] == "wamid.text"
        assert data["recipientName"] == "Ana"
        mock_provider.send_text.assert_awaited_once_with("18095551234", "Hola Ana")
        mock_provider.send_template.assert_not_awaited()
        assert tracker.query("wamid.text").message_type == "free_text"

    def test_falls_back_to_link(self, test_client, auth_headers, mock_provider):
        mock_provider.send_text.side_effect = ProviderError("Access token expired or invalid", code="190")
        body = {"phoneNumber": "18095551234", "message": "Hola & adiós"}

        data = test_client.post("/whatsapp/send-message", json=body, headers=auth_headers).json()

        assert data["method"] == "client-link"
        assert data["whatsappUrl"] == "https://wa.me/18095551234?text=Hola%20%26%20adi%C3%B3s"
        assert data["errors"]["api-text"]["code"] == "190"
        assert data["recipientName"] == "18095551234"

    @pytest.mark.parametrize("body", [
        {"phoneNumber": "18095551234"},
        {"phoneNumber": "18095551234", "message": ""},
        {"phoneNumber": "18095551234", "message": "   "},
        {"message": "hi"},
        {"phoneNumber": "12", "message": "hi"},
    ])
    def test_invalid_request(self, test_client, auth_headers, mock_provider, body):
        response = test_client.post("/whatsapp/send-message", json=body, headers=auth_headers)

        assert response.status_code == 422
        mock_provider.send_text.assert_not_awaited()

    def test_requires_authentication(self, test_client):
        response = test_client.post("/whatsapp/send-message", json={"phoneNumber": "1", "message": "x"})

        assert response.status_code == 401



class TestWebhook:
    def test_handshake(self, test_client, whatsapp_config):
        response = test_client.get("/whatsapp/webhook", params={
            "hub.mode": "subscribe",
            "hub.verify_token": whatsapp_config.webhook_verify_token,
            "hub.challenge": "987654",
        })

        assert response.status_code == 200
        assert response.text == "987654"

    def test_handshake_wrong_token(self, test_client):
        response = test_client.get("/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1",
        })

        assert response.status_code == 403

    def test_handshake_missing_params(self, test_client):
        assert test_client.get("/whatsapp/webhook").status_code == 400

    def test_status_update_applied(self, test_client, tracker, auth_headers):
        tracker.record_sent("wamid.1", "18095551234")
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"field": "messages", "value": {"statuses": [
                {"id": "wamid.1", "status": "read", "timestamp": "1709640000", "recipient_id": "18095551234"},
                {"id": "wamid.unknown", "status": "read", "timestamp": "1709640000"},
            ]}}]}],
        }

        response = test_client.post("/whatsapp/webhook", json=payload)

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"
        status = test_client.get("/whatsapp/message-status/wamid.1", headers=auth_headers).json()
        assert status["status"]["status"] == "read"
        assert status["status"]["recipient_id"] == "18095551234"

    def test_malformed_event_acknowledged(self, test_client):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"field": "messages", "value": {"statuses": [
                "x", {"id": "wamid.1", "status": "failed", "errors": "boom"},
            ]}}]}],
        }

        response = test_client.post("/whatsapp/webhook", json=payload)

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"

    def test_unknown_message_status(self, test_client, auth_headers):
        response = test_client.get("/whatsapp/message-status/wamid.nope", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_message_statuses(self, test_client, tracker, auth_headers):
        tracker.record_sent("wamid.1", "1")
        tracker.record_sent("wamid.2", "2")

        data = test_client.get("/whatsapp/message-statuses", headers=auth_headers).json()

        assert data["count"] == 2

    def test_health(self, test_client):
        data = test_client.get("/whatsapp/health").json()

        assert data["apiConfigured"] is True
        assert data["mode"] == "api-with-fallback"


class TestAuthRoutes:
    @pytest.fixture
    def account(self, mock_db):
        account = {
            "_id": ObjectId(),
            "email": "landlord@example.com",
            "firstname": "Lea",
            "lastname": "Ortiz",
            "password": hash_password("CorrectHorse9"),
        }
        mock_db.accounts.find_one = AsyncMock(return_value=account)
        return account

    def test_signin_sets_refresh_cookie(self, test_client, account):
        response = test_client.post(
            "/landlord/signin", json={"email": "landlord@example.com", "password": "CorrectHorse9"}
        )

        assert response.status_code == 200
        assert response.json()["accessToken"]
        assert "refreshToken" in response.cookies

    def test_signin_wrong_password(self, test_client, account):
        response = test_client.post(
            "/landlord/signin", json={"email": "landlord@example.com", "password": "wrong-password"}
        )

        assert response.status_code == 401

    def test_signin_requires_credentials(self, test_client):
        assert test_client.post("/landlord/signin", json={}).status_code == 422

    def test_refresh_rotates_and_rejects_reuse(self, test_client, token_service):
        pair = asyncio.run(token_service.issue({"sub": "acc-1"}))

        first = test_client.post("/landlord/refreshtoken", json={"refreshToken": pair.refresh_token})
        # only the body token counts for the replay
        test_client.cookies.clear()
        second = test_client.post("/landlord/refreshtoken", json={"refreshToken": pair.refresh_token})

        assert first.status_code == 200
        assert first.json()["refreshToken"] != pair.refresh_token
        assert second.status_code == 401

    def test_signout(self, test_client, token_service, fake_redis):
        pair = asyncio.run(token_service.issue({"sub": "acc-1"}))
        test_client.cookies.set("refreshToken", pair.refresh_token)

        response = test_client.delete("/landlord/signout")

        assert response.status_code == 204
        assert f"refresh_token:{pair.refresh_token}" not in fake_redis.data

    def test_signout_without_cookie(self, test_client):
        assert test_client.delete("/landlord/signout").status_code == 202

    def test_forgot_password_unknown_email_is_silent(self, test_client, fake_redis):
        response = test_client.post("/landlord/forgotpassword", json={"email": "nobody@example.com"})

        assert response.status_code == 204
        assert fake_redis.data == {}

    def test_reset_password(self, test_client, token_service, mock_db, account):
        mock_db.accounts.update_one = AsyncMock(return_value=AsyncMock(matched_count=1))
        token = asyncio.run(token_service.issue_reset_token("landlord@example.com"))

        response = test_client.patch(
            "/landlord/resetpassword", json={"resetToken": token, "password": "NewPassword42"}
        )

        assert response.status_code == 200
        mock_db.accounts.update_one.assert_awaited_once()

    def test_appcredz_requires_administrator(self, test_client):
        response = test_client.post(
            "/landlord/appcredz", json={"expiry": "2099-01-01T00:00:00Z", "organizationId": "org-1"}
        )

        assert response.status_code == 401

    @pytest.fixture
    def signup_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "SIGNUP_ENABLED", True)

    SIGNUP = {"firstname": "Lea", "lastname": "Ortiz", "email": "Lea@Example.com", "password": "CorrectHorse9"}

    def test_signup_creates_account(self, test_client, mock_db, signup_enabled):
        response = test_client.post("/landlord/signup", json=self.SIGNUP)

        assert response.status_code == 201
        stored = mock_db.accounts.insert_one.await_args.args[0]
        assert stored["email"] == "lea@example.com"
        assert stored["password"] != "CorrectHorse9"

    def test_signup_existing_email_looks_the_same(self, test_client, mock_db, account, signup_enabled):
        response = test_client.post("/landlord/signup", json=self.SIGNUP)

        assert response.status_code == 201
        mock_db.accounts.insert_one.assert_not_awaited()

    def test_signup_missing_fields(self, test_client, signup_enabled):
        response = test_client.post("/landlord/signup", json={**self.SIGNUP, "lastname": "  "})

        assert response.status_code == 422

    def test_signup_short_password(self, test_client, mock_db, signup_enabled):
        response = test_client.post("/landlord/signup", json={**self.SIGNUP, "password": "short"})

        assert response.status_code == 422
        mock_db.accounts.insert_one.assert_not_awaited()

    def test_signup_disabled(self, test_client, mock_db):
        response = test_client.post("/landlord/signup", json=self.SIGNUP)

        assert response.status_code == 404
        mock_db.accounts.insert_one.assert_not_awaited()

    def test_appcredz_expiry_capped(self, test_client, auth_headers):
        response = test_client.post(
            "/landlord/appcredz",
            json={"expiry": "2099-01-01T00:00:00Z", "organizationId": "org-1"},
            headers=auth_headers,
        )

        assert response.status_code == 422


class TestRentRoutes:
    RENT = {
        "_id": ObjectId(),
        "tenantId": "t1",
        "term": 2024030100,
        "charges": [{"description": "rent", "amount": 1000}],
        "payments": [{"amount": 600, "type": "cash"}],
    }
    TENANT = {
        "_id": "t1",
        "name": "Luis",
        "contacts": [{"contact": "Luis", "phone1": "+18095550001", "whatsapp1": True, "phone2": "8095550002", "whatsapp2": False}],
    }

    def test_settlement(self, test_client, mock_db, auth_headers):
        mock_db.rents.find_one = AsyncMock(return_value=dict(self.RENT))

        data = test_client.get("/rents/t1/2024030100", headers=auth_headers).json()

        assert data["total"]["grandTotal"] == 1000
        assert data["total"]["balance"] == 400
        assert data["status"] == "partially_paid"
        mock_db.rents.update_one.assert_awaited_once()

    def test_unknown_term(self, test_client, auth_headers):
        assert test_client.get("/rents/t1/2024030100", headers=auth_headers).status_code == 404

    def test_notify_only_whatsapp_contacts(self, test_client, mock_db, auth_headers, mock_provider):
        mock_db.rents.find_one = AsyncMock(return_value=dict(self.RENT))
        mock_db.tenants.find_one = AsyncMock(return_value=dict(self.TENANT))

        data = test_client.post(
            "/rents/t1/2024030100/whatsapp", json={"messageType": "payment_notice"}, headers=auth_headers
        ).json()

        assert data["summary"]["total"] == 1
        assert mock_provider.send_template.await_args.args[0] == "18095550001"

    def test_notify_paid_term_suppressed(self, test_client, mock_db, auth_headers, mock_provider):
        paid = {**self.RENT, "payments": [{"amount": 1000}]}
        mock_db.rents.find_one = AsyncMock(return_value=paid)
        mock_db.tenants.find_one = AsyncMock(return_value=dict(self.TENANT))

        data = test_client.post("/rents/t1/2024030100/whatsapp", json={}, headers=auth_headers).json()

        assert data["suppressed"] is True
        mock_provider.send_template.assert_not_awaited()


def test_root(test_client):
    assert test_client.get("/").json()["status"] == "running"
