import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from rentcall.notifications.payload import MessageType
from rentcall.utils.exceptions import ConfigurationError

load_dotenv()

DEFAULT_TEMPLATES = {
    MessageType.INVOICE: "factura2",
    MessageType.RENTCALL: "payment_notice",
    MessageType.RENTCALL_REMINDER: "payment_reminder",
    MessageType.RENTCALL_LAST_REMINDER: "final_notice",
}

TEMPLATE_ENV_VARS = {
    MessageType.INVOICE: "WHATSAPP_INVOICE_TEMPLATE",
    MessageType.RENTCALL: "WHATSAPP_PAYMENT_NOTICE_TEMPLATE",
    MessageType.RENTCALL_REMINDER: "WHATSAPP_PAYMENT_REMINDER_TEMPLATE",
    MessageType.RENTCALL_LAST_REMINDER: "WHATSAPP_FINAL_NOTICE_TEMPLATE",
}


@dataclass
class TemplateConfig:
    """Message type -> approved provider template name"""
    templates: Dict[MessageType, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))

    @classmethod
    def from_env(cls) -> "TemplateConfig":
        return cls(templates={
            message_type: os.getenv(env_var, DEFAULT_TEMPLATES[message_type])
            for message_type, env_var in TEMPLATE_ENV_VARS.items()
        })

    def validate(self) -> None:
        missing = [t.value for t in MessageType if not (self.templates.get(t) or "").strip()]
        if missing:
            raise ConfigurationError(f"No WhatsApp template configured for: {', '.join(missing)}")

    def template_for(self, message_type: MessageType) -> str:
        return self.templates[message_type]


@dataclass
class WhatsAppConfig:
    """Meta WhatsApp Cloud API configuration"""
    api_url: str = "https://graph.facebook.com/v18.0"
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    template_language: str = "es"
    webhook_verify_token: str = "microrealestate_webhook_token"
    timeout_seconds: float = 5.0
    provider: str = "meta"
    templates: TemplateConfig = field(default_factory=TemplateConfig)

    @classmethod
    def from_env(cls) -> "WhatsAppConfig":
        """Create configuration from environment variables"""
        return cls(
            api_url=os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0").rstrip("/"),
            access_token=os.getenv("WHATSAPP_ACCESS_TOKEN") or None,
            phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID") or None,
            template_language=os.getenv("WHATSAPP_TEMPLATE_LANGUAGE", "es"),
            webhook_verify_token=os.getenv(
                "WHATSAPP_WEBHOOK_VERIFY_TOKEN", "microrealestate_webhook_token"
            ),
            timeout_seconds=float(os.getenv("WHATSAPP_TIMEOUT_SECONDS", "5")),
            provider=os.getenv("WHATSAPP_PROVIDER", "meta"),
            templates=TemplateConfig.from_env(),
        )

    def validate(self) -> None:
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid WhatsApp API URL: {self.api_url}")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("WHATSAPP_TIMEOUT_SECONDS must be positive")
        if not self.webhook_verify_token:
            raise ConfigurationError("WHATSAPP_WEBHOOK_VERIFY_TOKEN cannot be empty")
        self.templates.validate()

    @property
    def api_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.phone_number_id}/messages"
