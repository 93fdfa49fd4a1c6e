from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar('T')

OK = 'ok'
EMPTY = 'empty'
FAILED = 'failed'


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation.

    ``empty`` is a legitimate "nothing to report" (click outside gameplay,
    no scorers); ``failed`` means the operation could not be carried out.
    """
    status: str
    value: Optional[T] = None
    reason: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def of(cls, value: T) -> 'Outcome[T]':
        return cls(OK, value)

    @classmethod
    def empty(cls, reason: Optional[str] = None, value: Optional[T] = None) -> 'Outcome[T]':
        return cls(EMPTY, value, reason)

    @classmethod
    def failure(cls, reason: str, kind: str = 'storage') -> 'Outcome[T]':
        return cls(FAILED, None, reason, kind)

    @property
    def succeeded(self) -> bool:
        return self.status != FAILED

    @property
    def is_empty(self) -> bool:
        return self.status == EMPTY

    @property
    def failed(self) -> bool:
        return self.status == FAILED
