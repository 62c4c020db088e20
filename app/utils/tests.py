from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI

from api.dependencies.rate_limits import get_limiter, setup_rate_limiter


def create_test_app(
    routers, dependency_overrides: Optional[Dict[Callable, Callable[[], Any]]] = None
) -> FastAPI:
    """
    Create a FastAPI test application with the given routers.

    Args:
        routers: A router or list of routers to include in the app.
        dependency_overrides: Optional mapping of provider function to the
            callable that replaces it, e.g. ``{get_settings: lambda: settings}``.

    Returns:
        FastAPI: A configured FastAPI application.

    Example:
        app = create_test_app(
            [system_router], {get_notification_service: lambda: service}
        )
    """
    app = FastAPI()
    setup_rate_limiter(app)

    # Counters are process-wide; start each app with a clean window
    get_limiter().reset()

    if not isinstance(routers, list):
        routers = [routers]
    for router in routers:
        app.include_router(router)

    for provider, override in (dependency_overrides or {}).items():
        app.dependency_overrides[provider] = override

    return app
