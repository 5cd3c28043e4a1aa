"""Request-scoped access to the store handles."""

from fastapi import Request

from curriculum.core.services import Services, build_services


def get_services(request: Request) -> Services:
    """Services attached to the app, built from config on first use."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services
