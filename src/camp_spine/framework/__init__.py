"""Concrete adapters for the collaborator protocols in :mod:`camp_spine.core.protocols`."""

from camp_spine.framework.dispatch import (
    BaseDispatcher,
    ConsoleDispatcher,
    SmtpDispatcher,
    WebhookDispatcher,
    build_dispatcher,
)

__all__ = [
    "BaseDispatcher",
    "ConsoleDispatcher",
    "SmtpDispatcher",
    "WebhookDispatcher",
    "build_dispatcher",
]
