# src/bgtasks/bootstrap.py

"""
Composition root.

Builds the objects an app needs from settings:
- one TaskScheduler (with its registry and notification bus),
- the named request queues (marketplace / ai / general).

Nothing here is a module-level singleton; call these once at startup and pass
the results to whoever needs them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Settings, get_settings
from .logging_setup import setup_logging
from .tasks.notifications import NotificationBus
from .tasks.request_queue import RequestQueue
from .tasks.task_registry import TaskRegistry
from .tasks.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RequestQueues:
    marketplace: RequestQueue
    ai: RequestQueue
    general: RequestQueue


@dataclass(slots=True)
class BackgroundServices:
    settings: Settings
    scheduler: TaskScheduler
    queues: RequestQueues


def create_scheduler(*, settings: Settings | None = None) -> TaskScheduler:
    if settings is None:
        settings = get_settings()
    registry = TaskRegistry(NotificationBus())
    return TaskScheduler(registry, max_concurrent=settings.max_concurrent)


def create_request_queues(*, settings: Settings | None = None) -> RequestQueues:
    if settings is None:
        settings = get_settings()
    return RequestQueues(
        marketplace=RequestQueue(settings.marketplace_concurrency, name="marketplace"),
        ai=RequestQueue(settings.ai_concurrency, name="ai"),
        general=RequestQueue(settings.general_concurrency, name="general"),
    )


def create_services(*, settings: Settings | None = None, configure_logging: bool = False) -> BackgroundServices:
    """
    Build everything from one settings object.

    configure_logging=True also installs handlers (use it from entrypoints, not libraries).
    """
    if settings is None:
        settings = get_settings()

    if configure_logging:
        level = getattr(logging, settings.log_level, logging.INFO)
        setup_logging(log_dir=settings.log_dir, console_level=level)

    services = BackgroundServices(
        settings=settings,
        scheduler=create_scheduler(settings=settings),
        queues=create_request_queues(settings=settings),
    )
    logger.info(
        "%s ready max_concurrent=%d queues=%d/%d/%d",
        settings.app_name,
        settings.max_concurrent,
        settings.marketplace_concurrency,
        settings.ai_concurrency,
        settings.general_concurrency,
    )
    return services
