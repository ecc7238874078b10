"""
Per-recipient delivery chain.

For every phone number of an :class:`OutboundMessage`:

1. approved template through the provider API,
2. free-text message through the provider API,
3. a wa.me click-to-chat link the operator opens by hand.

The first success is terminal. The link step cannot fail, so every
recipient ends up with a delivery method.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from rentcall.metrics.metrics import MetricsCollector
from rentcall.notifications.payload import OutboundMessage, render_text, template_parameters
from rentcall.utils.exceptions import ProviderError, ValidationError
from rentcall.whatsapp.config import TemplateConfig
from rentcall.whatsapp.deeplink import build_deep_link, normalize_phone
from rentcall.whatsapp.providers.base import BaseMessagingProvider
from rentcall.whatsapp.tracker import DeliveryStatusTracker

logger = structlog.get_logger(__name__)


class DeliveryMethod(str, Enum):
    API_TEMPLATE = "api-template"
    API_TEXT = "api-text"
    CLIENT_LINK = "client-link"


# message_type label for ad-hoc text sends
FREE_TEXT = "free_text"


@dataclass
class RecipientOutcome:
    phone_number: str
    formatted_phone: str
    method: DeliveryMethod
    message_id: Optional[str] = None
    whatsapp_url: Optional[str] = None
    errors: Dict[str, dict] = field(default_factory=dict)

    @property
    def via_api(self) -> bool:
        return self.method in (DeliveryMethod.API_TEMPLATE, DeliveryMethod.API_TEXT)

    def as_dict(self) -> dict:
        return {
            "phoneNumber": self.phone_number,
            "formattedPhone": self.formatted_phone,
            "method": self.method.value,
            "messageId": self.message_id,
            "whatsappUrl": self.whatsapp_url,
            "errors": self.errors,
        }


@dataclass
class DispatchResult:
    message_type: str
    outcomes: List[RecipientOutcome]

    @property
    def summary(self) -> dict:
        api_success = sum(1 for o in self.outcomes if o.via_api)
        return {
            "total": len(self.outcomes),
            "apiSuccess": api_success,
            "linkFallback": len(self.outcomes) - api_success,
        }

    def as_dict(self) -> dict:
        return {
            "messageType": self.message_type,
            "results": [o.as_dict() for o in self.outcomes],
            "summary": self.summary,
        }


class TemplateDispatcher:
    def __init__(
        self,
        provider: Optional[BaseMessagingProvider],
        tracker: DeliveryStatusTracker,
        templates: TemplateConfig,
        template_language: str = "es",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.provider = provider
        self.tracker = tracker
        self.templates = templates
        self.template_language = template_language
        self.metrics = metrics

    @property
    def api_enabled(self) -> bool:
        return self.provider is not None and self.provider.configured

    async def dispatch(self, message: OutboundMessage, link_only: bool = False) -> DispatchResult:
        """
        Run the chain for every recipient concurrently.

        With ``link_only`` the API is not called and every recipient gets
        a deep link.

        Raises:
            ValidationError: a phone number cannot be normalized; raised
                before any recipient is attempted
        """
        formatted = [(phone, normalize_phone(phone)) for phone in message.phone_numbers]
        text = render_text(message)
        if link_only or not self.api_enabled:
            template = None
        else:
            template = (
                self.templates.template_for(message.message_type),
                template_parameters(message),
            )
        outcomes = await asyncio.gather(*(
            self._deliver(phone, digits, text, message.message_type.value, template, link_only)
            for phone, digits in formatted
        ))
        result = DispatchResult(message_type=message.message_type.value, outcomes=list(outcomes))
        logger.info("whatsapp_dispatch_completed", message_type=result.message_type, **result.summary)
        return result

    async def send_message(self, phone: str, text: str) -> RecipientOutcome:
        """Free text to one recipient: API text message, else deep link."""
        if not text or not text.strip():
            raise ValidationError("Message text is required")
        return await self._deliver(phone, normalize_phone(phone), text, FREE_TEXT)

    async def _deliver(
        self,
        phone: str,
        digits: str,
        text: str,
        message_type: str,
        template: Optional[Tuple[str, List[str]]] = None,
        link_only: bool = False,
    ) -> RecipientOutcome:
        outcome = RecipientOutcome(
            phone_number=phone,
            formatted_phone=digits,
            method=DeliveryMethod.CLIENT_LINK,
        )

        if link_only:
            logger.debug("whatsapp_link_only", phone=digits, message_type=message_type)
        elif not self.api_enabled:
            outcome.errors["api"] = {
                "code": "provider_not_configured",
                "message": "WhatsApp API is not configured",
            }
        else:
            message_id = None
            if template is not None:
                template_name, parameters = template
                message_id = await self._attempt(
                    outcome, DeliveryMethod.API_TEMPLATE,
                    self.provider.send_template(digits, template_name, self.template_language, parameters),
                )
            if message_id is None:
                message_id = await self._attempt(
                    outcome, DeliveryMethod.API_TEXT, self.provider.send_text(digits, text)
                )
            if message_id is not None:
                outcome.message_id = message_id
                self.tracker.record_sent(
                    message_id,
                    digits,
                    message_type=message_type,
                    method=outcome.method.value,
                )

        if outcome.method is DeliveryMethod.CLIENT_LINK:
            outcome.whatsapp_url = build_deep_link(digits, text)
            logger.info("whatsapp_link_fallback", phone=digits, message_type=message_type)

        if self.metrics:
            self.metrics.record_dispatch(outcome.method.value, message_type)
        return outcome

    async def _attempt(self, outcome: RecipientOutcome, method: DeliveryMethod, call) -> Optional[str]:
        started = time.perf_counter()
        try:
            message_id = await call
        except ProviderError as e:
            return self._record_failure(outcome, method, e)
        except Exception:
            logger.exception("whatsapp_attempt_crashed", phone=outcome.formatted_phone, attempt=method.value)
            return self._record_failure(outcome, method, ProviderError("Unexpected provider failure", code="unexpected"))
        finally:
            if self.metrics:
                self.metrics.provider_request_duration.labels(attempt=method.value).observe(
                    time.perf_counter() - started
                )

        outcome.method = method
        logger.info("whatsapp_message_sent", phone=outcome.formatted_phone, via=method.value, message_id=message_id)
        return message_id

    def _record_failure(self, outcome: RecipientOutcome, method: DeliveryMethod, e: ProviderError) -> None:
        outcome.errors[method.value] = e.as_dict()
        logger.warning(
            "whatsapp_attempt_failed",
            phone=outcome.formatted_phone,
            attempt=method.value,
            code=e.code,
            error=e.message,
        )
        if self.metrics:
            self.metrics.record_provider_failure(method.value, e.code)
        return None
