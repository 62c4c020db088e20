"""Infrastructure modules for the notification orchestrator.

Centralized infrastructure components:
- configuration: Settings management (settings, Settings)
- logging: Structured logging (get_module_logger)
- events: In-process event bus
- idempotency: Dedup index for duplicate suppression
- operations: Operation results and error classification
- queue: Durable job queue and worker
- resilience: Circuit breakers and non-critical error boundaries
- services: Dependency injection providers (SettingsDep, get_settings)
"""

# Configuration
from infrastructure.configuration import settings

# Logging
from infrastructure.logging import get_module_logger

# Operations
from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

__all__ = [
    # Configuration
    "settings",
    # Logging
    "get_module_logger",
    # Operations
    "OperationResult",
    "OperationStatus",
]
