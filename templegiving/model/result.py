from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok = True

    @property
    def error(self) -> None:
        return None


@dataclass(frozen=True)
class Err:
    error: str
    detail: Any = None
    ok = False

    @property
    def value(self) -> None:
        return None


Result = Union[Ok[T], Err]

__all__ = ["Ok", "Err", "Result"]
