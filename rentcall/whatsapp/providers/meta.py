from typing import Any, Dict, List, Optional

import httpx
import structlog

from rentcall.utils.exceptions import ProviderError
from rentcall.whatsapp.config import WhatsAppConfig
from rentcall.whatsapp.providers.base import BaseMessagingProvider

logger = structlog.get_logger(__name__)

# Meta Graph API error codes worth a readable explanation
KNOWN_ERRORS = {
    "131030": "Recipient phone number not in allowed list",
    "190": "Access token expired or invalid",
    "132000": "Template not found or not approved",
    "132001": "Template does not exist in the requested language",
    "131026": "Message undeliverable",
}


class MetaCloudProvider(BaseMessagingProvider):
    """WhatsApp Business Cloud API (graph.facebook.com) implementation."""

    name = "meta"

    def __init__(self, config: WhatsAppConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    def configured(self) -> bool:
        return self.config.api_configured

    async def send_template(
        self, to: str, template_name: str, language: str, parameters: List[str]
    ) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language},
                "components": [
                    {
                        "type": "body",
                        "parameters": [{"type": "text", "text": str(p)} for p in parameters],
                    }
                ],
            },
        }
        return await self._send(payload)

    async def send_text(self, to: str, body: str) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        return await self._send(payload)

    async def _send(self, payload: Dict[str, Any]) -> str:
        if not self.configured:
            raise ProviderError("WhatsApp API is not configured", code="provider_not_configured")

        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        try:
            if self._client is not None:
                resp = await self._client.post(
                    self.config.messages_url,
                    headers=headers,
                    json=payload,
                    timeout=self.config.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(
                        self.config.messages_url,
                        headers=headers,
                        json=payload,
                        timeout=self.config.timeout_seconds,
                    )
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"WhatsApp API timed out after {self.config.timeout_seconds}s", code="timeout"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"WhatsApp API request failed: {e}", code="transport_error") from e

        if resp.is_error:
            raise self._error_from_response(resp)

        try:
            return resp.json()["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError("WhatsApp API response had no message id", code="bad_response") from e

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> ProviderError:
        try:
            body = resp.json()
        except ValueError:
            body = None
        # proxies and gateways may answer without a Graph error object
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            error = {}
        code = str(error["code"]) if error.get("code") is not None else str(resp.status_code)
        message = KNOWN_ERRORS.get(code) or error.get("message") or resp.reason_phrase
        logger.warning(
            "whatsapp_api_error",
            status_code=resp.status_code,
            code=code,
            error_type=error.get("type"),
        )
        return ProviderError(message, code=code, http_status=resp.status_code)
