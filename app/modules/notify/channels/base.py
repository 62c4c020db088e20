"""Channel adapter abstract base class.

All channel implementations (email, SMS, WhatsApp, chat, push) implement
this interface. Adapters never raise for provider failures: they return a
DeliveryResult whose ``error_category`` drives the executor's retry
decision.
"""

from abc import ABC, abstractmethod
from typing import List

from infrastructure.operations import OperationResult, OperationStatus
from modules.notify.domain import ChannelCode, DeliveryRequest, DeliveryResult, ErrorCategory


def category_from_result(result: OperationResult) -> ErrorCategory:
    """Map an OperationResult error onto a delivery error category."""
    if result.is_rate_limited:
        return ErrorCategory.RATE_LIMIT
    if result.status == OperationStatus.UNAUTHORIZED:
        return ErrorCategory.AUTH
    if result.status == OperationStatus.TRANSIENT_ERROR:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT


def result_to_delivery(result: OperationResult) -> DeliveryResult:
    """Convert a failed OperationResult into a failed DeliveryResult."""
    return DeliveryResult.failed(
        category_from_result(result),
        result.message,
        retry_after=result.retry_after,
    )


def config_result(errors: List[str]) -> OperationResult:
    """validate_config() outcome for a list of configuration errors."""
    if errors:
        return OperationResult.permanent_error(
            "; ".join(errors), error_code="INVALID_CONFIG", data={"errors": errors}
        )
    return OperationResult.success(message="Configuration valid")


class ChannelAdapter(ABC):
    """Abstract base class for channel adapters.

    Example Implementation:
        class ChatAdapter(ChannelAdapter):
            channel_code = ChannelCode.CHAT
            provider_code = "slack"

            def deliver(self, request: DeliveryRequest) -> DeliveryResult:
                ...
    """

    channel_code: ChannelCode
    provider_code: str

    @property
    def key(self) -> str:
        """Registry key, ``channel:provider``."""
        return f"{self.channel_code.value}:{self.provider_code}"

    @abstractmethod
    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        """Send one message.

        Must handle provider errors and return a failed DeliveryResult
        rather than raising.
        """

    @abstractmethod
    def validate_config(self) -> OperationResult:
        """Check credentials and settings without calling the provider.

        Returns:
            Success, or a permanent error with ``data={"errors": [...]}``
        """

    def health_check(self) -> OperationResult:
        """Report adapter health. Never sends a message."""
        return self.validate_config()
