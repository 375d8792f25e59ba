"""
Ok / Err return values for the suspension points (download, vocabulary
parse, inference). Errors travel back as values instead of exceptions.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from pocket_embed.errors import EmbedError, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: EmbedError

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]


def err(
    kind: ErrorKind,
    message: str,
    operation: str = "",
    model_label: str | None = None,
) -> Err:
    return Err(EmbedError(kind, message, operation=operation, model_label=model_label))
