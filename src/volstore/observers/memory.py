# src/volstore/observers/memory.py
from __future__ import annotations
from typing import List, Type
from .events import BaseEvent


class MemoryObserver:
    """Keeps every event in order. Handy for tests and embedding callers."""

    def __init__(self):
        self.events: List[BaseEvent] = []

    def notify(self, event: BaseEvent) -> None:
        self.events.append(event)

    def of_type(self, etype: Type[BaseEvent]) -> List[BaseEvent]:
        return [e for e in self.events if isinstance(e, etype)]
