"""Collaborator interfaces the loader dispatches to."""

import logging
from typing import Any, Protocol

from .models import DecodedInstance

logger = logging.getLogger(__name__)


class Viewport(Protocol):
    def load_instance(self, instance: DecodedInstance) -> None: ...

    def reset(self) -> None: ...


class Navigation(Protocol):
    def highlight_series(self, series_uid: str) -> None: ...


class FrameRegistry(Protocol):
    def register_instance(self, instance: DecodedInstance) -> None: ...


class StatusBanner(Protocol):
    def set_message(self, text: str) -> None: ...

    def set_error(self, text: str) -> None: ...


class RecordingViewer:
    """
    Headless implementation of every collaborator interface.

    Logs each call and keeps an ordered event list of
    ``(event, payload)`` tuples, plus the instances seen on each path.
    """

    def __init__(self):
        self.events: list[tuple[str, Any]] = []
        self.rendered: list[DecodedInstance] = []
        self.registered: list[DecodedInstance] = []
        self.highlighted: list[str] = []
        self.status: str = ""
        self.status_is_error = False

    def load_instance(self, instance: DecodedInstance) -> None:
        logger.info(f"Rendering {instance.sop_uid} (series {instance.series_uid})")
        self.rendered.append(instance)
        self.events.append(("render", instance.sop_uid))

    def reset(self) -> None:
        self.events.append(("reset", None))

    def highlight_series(self, series_uid: str) -> None:
        self.highlighted.append(series_uid)
        self.events.append(("highlight", series_uid))

    def register_instance(self, instance: DecodedInstance) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Registered {instance.sop_uid} (series {instance.series_uid})")
        self.registered.append(instance)
        self.events.append(("register", instance.sop_uid))

    def set_message(self, text: str) -> None:
        logger.info(text)
        self.status = text
        self.status_is_error = False
        self.events.append(("status", text))

    def set_error(self, text: str) -> None:
        logger.error(text)
        self.status = text
        self.status_is_error = True
        self.events.append(("error", text))
