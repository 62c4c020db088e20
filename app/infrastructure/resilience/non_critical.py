"""Error boundary for best-effort side effects.

Some writes (event fan-out, explain-trace appends, dead-letter records)
must be attempted before the main path returns but must never fail it.
``run_non_critical`` runs the write synchronously, logs any failure and
reports the outcome as an OperationResult.
"""

from typing import Any, Callable

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult

logger = get_module_logger()


def run_non_critical(
    name: str, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> OperationResult:
    """Run func, converting any exception into a logged transient error.

    Args:
        name: Short name of the write, used as log context
        func: Callable performing the write
        *args, **kwargs: Arguments passed to func

    Returns:
        OperationResult.success with the return value, or a transient error
    """
    try:
        return OperationResult.success(data=func(*args, **kwargs))
    except Exception as e:
        logger.warning(
            "non_critical_write_failed",
            write=name,
            error=str(e),
            exc_info=True,
        )
        return OperationResult.transient_error(
            f"{name} failed: {str(e)}", error_code="NON_CRITICAL_WRITE_FAILED"
        )
