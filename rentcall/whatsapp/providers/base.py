from abc import ABC, abstractmethod
from typing import List


class BaseMessagingProvider(ABC):
    """Abstract base class for WhatsApp messaging providers.

    Implementations return the provider message id on success and raise
    ProviderError on any failure, timeouts included.
    """

    name = "base"

    @abstractmethod
    async def send_template(
        self, to: str, template_name: str, language: str, parameters: List[str]
    ) -> str:
        """Send a pre-approved template with positional body parameters."""
        pass

    @abstractmethod
    async def send_text(self, to: str, body: str) -> str:
        """Send a free-text message."""
        pass

    @property
    def configured(self) -> bool:
        return True
