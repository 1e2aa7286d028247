"""Structured warning events collected while processing a module."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

logger = logging.getLogger("veilunpack")


class DiagnosticKind(str, Enum):
    """Kinds of recoverable problems found in a bundle."""
    MISSING_MANIFEST = "missing_manifest"
    UNKNOWN_ELEMENT = "unknown_element"
    MISSING_OFFSET = "missing_offset"


@dataclass(frozen=True)
class DiagnosticEvent:
    kind: DiagnosticKind
    message: str
    element: Optional[str] = None
    attribute: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "element": self.element,
            "attribute": self.attribute,
        }


class Diagnostics:
    """Collects warning events and forwards them to the ``veilunpack`` logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.events: list[DiagnosticEvent] = []
        self._logger = log or logger

    def warn(
        self,
        kind: DiagnosticKind,
        message: str,
        element: Optional[str] = None,
        attribute: Optional[str] = None,
    ) -> DiagnosticEvent:
        event = DiagnosticEvent(kind=kind, message=message, element=element, attribute=attribute)
        self.events.append(event)
        self._logger.warning(message)
        return event

    def of_kind(self, kind: DiagnosticKind) -> list[DiagnosticEvent]:
        return [event for event in self.events if event.kind == kind]

    def clear(self) -> None:
        self.events.clear()

    def __iter__(self) -> Iterator[DiagnosticEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)
