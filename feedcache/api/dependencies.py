"""
FastAPI Dependency Injection

The composition root builds one AppContainer per application and stores it
on ``app.state.container`` during lifespan startup. Route handlers receive it
(or one of its components) through these dependencies, never through a
module-level global.

Example:
    @router.get("/jobs")
    async def list_jobs(orchestrator: OrchestratorDep):
        return orchestrator.get_status()

Author: System Architect
Date: 2025-12-15
"""

from typing import Annotated

from fastapi import Depends, Request

from feedcache.container import AppContainer
from feedcache.infrastructure.cache.cache_manager import CacheFacade
from feedcache.infrastructure.cache.invalidator import SmartInvalidator
from feedcache.scheduling.orchestrator import JobOrchestrator


def get_container(request: Request) -> AppContainer:
    """
    Retrieve the container from application state.

    Raises:
        RuntimeError: If the lifespan startup did not run
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError(
            "AppContainer not initialized in app.state. "
            "This indicates the application lifespan startup didn't complete properly."
        )
    return container


def get_orchestrator(container: Annotated[AppContainer, Depends(get_container)]) -> JobOrchestrator:
    return container.orchestrator


def get_cache(container: Annotated[AppContainer, Depends(get_container)]) -> CacheFacade:
    return container.cache


def get_invalidator(container: Annotated[AppContainer, Depends(get_container)]) -> SmartInvalidator:
    return container.invalidator


# ============================================================================
# TYPE ALIASES
# ============================================================================

ContainerDep = Annotated[AppContainer, Depends(get_container)]
OrchestratorDep = Annotated[JobOrchestrator, Depends(get_orchestrator)]
CacheDep = Annotated[CacheFacade, Depends(get_cache)]
InvalidatorDep = Annotated[SmartInvalidator, Depends(get_invalidator)]
