"""Channel adapter registry.

Built once at startup. Every adapter call goes through the adapter's
circuit breaker; an open breaker yields a transient result without
calling the provider.
"""

import threading
from typing import Dict, List, Optional

from infrastructure.logging import get_module_logger
from infrastructure.resilience import CircuitBreakerOpenError, CircuitBreakerRegistry
from modules.notify.channels.base import ChannelAdapter
from modules.notify.domain import (
    AdapterNotFoundError,
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
)

logger = get_module_logger()


def _is_transient_failure(result: DeliveryResult) -> bool:
    """Provider-side failures count against the breaker; rejected input does not."""
    return not result.success and result.error_category in (
        ErrorCategory.TRANSIENT,
        ErrorCategory.RATE_LIMIT,
    )


class ChannelRegistry:
    def __init__(self, breakers: Optional[CircuitBreakerRegistry] = None):
        self.breakers = breakers
        self._adapters: Dict[str, ChannelAdapter] = {}
        self._defaults: Dict[ChannelCode, str] = {}
        self._lock = threading.Lock()

    def register(self, adapter: ChannelAdapter, default: bool = False) -> None:
        """Register adapter; the first adapter of a channel is its default."""
        with self._lock:
            self._adapters[adapter.key] = adapter
            if default or adapter.channel_code not in self._defaults:
                self._defaults[adapter.channel_code] = adapter.key
        if self.breakers is not None:
            self.breakers.get_or_create(
                adapter.key, failure_predicate=_is_transient_failure
            )
        logger.info(
            "channel_adapter_registered",
            channel=adapter.channel_code.value,
            provider=adapter.provider_code,
        )

    def get(
        self, channel: ChannelCode, provider_code: Optional[str] = None
    ) -> ChannelAdapter:
        """Return the adapter for channel (and provider, if given).

        Raises:
            AdapterNotFoundError: If nothing is registered.
        """
        with self._lock:
            if provider_code:
                adapter = self._adapters.get(f"{channel.value}:{provider_code}")
            else:
                key = self._defaults.get(channel)
                adapter = self._adapters.get(key) if key else None
        if adapter is None:
            raise AdapterNotFoundError(channel.value, provider_code)
        return adapter

    def has(self, channel: ChannelCode) -> bool:
        with self._lock:
            return channel in self._defaults

    def adapters(self) -> List[ChannelAdapter]:
        with self._lock:
            return list(self._adapters.values())

    def deliver(self, adapter: ChannelAdapter, request: DeliveryRequest) -> DeliveryResult:
        """Call adapter.deliver through its circuit breaker."""
        breaker = self.breakers.get(adapter.key) if self.breakers else None
        if breaker is None:
            return adapter.deliver(request)
        try:
            return breaker.call(adapter.deliver, request)
        except CircuitBreakerOpenError as e:
            return DeliveryResult.failed(
                ErrorCategory.TRANSIENT,
                str(e),
                retry_after=breaker.retry_after_seconds() or None,
            )

    def health_check(self) -> Dict[str, bool]:
        """Health of every adapter, keyed ``channel:provider``."""
        health: Dict[str, bool] = {}
        for adapter in self.adapters():
            try:
                health[adapter.key] = adapter.health_check().is_success
            except Exception as e:
                logger.error(
                    "channel_health_check_failed",
                    adapter=adapter.key,
                    error=str(e),
                    exc_info=True,
                )
                health[adapter.key] = False
        return health

    def validate_all(self) -> Dict[str, List[str]]:
        """Configuration errors per adapter; adapters without errors are omitted."""
        problems: Dict[str, List[str]] = {}
        for adapter in self.adapters():
            result = adapter.validate_config()
            if not result.is_success:
                errors = (result.data or {}).get("errors") or [result.message]
                problems[adapter.key] = errors
                logger.warning(
                    "channel_adapter_misconfigured", adapter=adapter.key, errors=errors
                )
        return problems
