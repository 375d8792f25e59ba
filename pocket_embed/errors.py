"""
Typed errors shared by the download, vocabulary, session and inference steps.
"""

from enum import Enum


class ErrorKind(str, Enum):
    DOWNLOAD_FAILURE = "download_failure"
    VOCABULARY_PARSE_FAILURE = "vocabulary_parse_failure"
    INITIALIZATION_FAILURE = "initialization_failure"
    INFERENCE_FAILURE = "inference_failure"
    UNRECOGNIZED_OUTPUT_SHAPE = "unrecognized_output_shape"
    EMBEDDING_UNAVAILABLE = "embedding_unavailable"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    MALFORMED_STORED_VECTOR = "malformed_stored_vector"
    # model cache could not be read or cleaned up
    CACHE_FAILURE = "cache_failure"
    # selection changed while the operation was running
    SUPERSEDED = "superseded"


class EmbedError(Exception):
    """
    Error surfaced to callers. Carries a human readable cause plus the
    operation and model label involved so the caller can pick between a
    retry and a re-download.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        operation: str = "",
        model_label: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.operation = operation
        self.model_label = model_label

    def with_context(self, operation: str, model_label: str | None) -> "EmbedError":
        """Fill in operation/model label if the raiser did not know them."""
        if not self.operation:
            self.operation = operation
        if self.model_label is None:
            self.model_label = model_label
        return self

    def __str__(self) -> str:
        where = self.operation or "?"
        if self.model_label:
            where = f"{where} [{self.model_label}]"
        return f"{self.kind.value} during {where}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"EmbedError(kind={self.kind.name}, operation={self.operation!r}, "
            f"model_label={self.model_label!r}, message={self.message!r})"
        )
