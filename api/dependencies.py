"""
Request dependencies.

The ServiceContainer is created once per app and kept on app.state.
"""

from fastapi import Request

from velumx.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
