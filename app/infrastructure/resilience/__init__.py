"""Resilience patterns and implementations.

This module contains resilience-related infrastructure components: circuit
breakers guarding provider calls and the error boundary for best-effort
writes.
"""

from infrastructure.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitBreakerRegistry,
    CircuitState,
)
from infrastructure.resilience.non_critical import run_non_critical

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitBreakerRegistry",
    "CircuitState",
    "run_non_critical",
]
