"""
One-shot hand-off between the analysis flow and the results view.

A slot holds at most one value. ``put`` stores it; ``take`` returns it and
leaves the slot empty, so a second ``take`` sees nothing. There is no
``get``: reading is consuming.
"""
import logging
from typing import Any, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANALYSIS_RESULT_KEY = "resumeAnalysisResult"
TARGET_JOB_KEY = "targetJobInfo"

_EMPTY = object()


class HandoffSlot(Generic[T]):
    def __init__(self, name: str):
        self.name = name
        self._value: Any = _EMPTY

    @property
    def is_empty(self) -> bool:
        return self._value is _EMPTY

    def put(self, value: T) -> None:
        if not self.is_empty:
            logger.info(f"Hand-off slot {self.name!r} overwritten before it was read")
        self._value = value

    def take(self) -> Optional[T]:
        value, self._value = self._value, _EMPTY
        return None if value is _EMPTY else value

    def clear(self) -> None:
        self._value = _EMPTY


class HandoffStore:
    """Named slots scoped to one session."""

    def __init__(self):
        self._slots: Dict[str, HandoffSlot] = {}

    def slot(self, name: str) -> HandoffSlot:
        if name not in self._slots:
            self._slots[name] = HandoffSlot(name)
        return self._slots[name]

    def put(self, name: str, value: Any) -> None:
        self.slot(name).put(value)

    def take(self, name: str) -> Optional[Any]:
        return self.slot(name).take()

    def clear(self) -> None:
        for s in self._slots.values():
            s.clear()
