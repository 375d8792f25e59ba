"""
Model lifecycle: download → initialize → ready, for one selected model at a
time.

The manager owns the only ModelRuntimeState of the process. Every mutation
goes through it, under a lock, and is tagged with the selection generation
it started in. When ``select`` (or ``delete`` / ``close``) bumps the
generation, results of operations still running for the old selection are
dropped instead of merged.
"""

import dataclasses
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from general.model_download import fetch
from pocket_embed import catalog
from pocket_embed.catalog import ModelDescriptor
from pocket_embed.embedder import create_session
from pocket_embed.errors import EmbedError, ErrorKind
from pocket_embed.result import Ok, Result, err
from pocket_embed.tokenizer import Vocabulary, load_vocabulary

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://huggingface.co"


class ModelState(str, Enum):
    NOT_DOWNLOADED = "not-downloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ModelRuntimeState:
    descriptor: ModelDescriptor
    state: ModelState = ModelState.NOT_DOWNLOADED
    vocabulary: Vocabulary | None = None
    session: Any = None
    progress: float = 0.0
    error: EmbedError | None = None


@dataclass(frozen=True)
class ActiveModel:
    """What the embedding pipeline needs from a ready model."""

    descriptor: ModelDescriptor
    vocabulary: Vocabulary
    session: Any
    generation: int


class _Superseded(Exception):
    """Raised from a progress callback to abort a download nobody wants."""


def _release(session) -> None:
    close = getattr(session, "close", None)
    if callable(close):
        try:
            close()
        except Exception as e:  # session close errors are logged only
            logger.warning("error while releasing session: %s", e)


class ModelManager:
    def __init__(
        self,
        descriptor: ModelDescriptor | None = None,
        cache_dir: str | Path | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        fetcher: Callable = fetch,
        session_factory: Callable = create_session,
        retries: int = 3,
        timeout: float = 30.0,
        on_change: Callable[[ModelRuntimeState], None] | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else Path.home() / ".cache" / "pocket_embed"
        self.base_url = base_url
        self.retries = retries
        self.timeout = timeout
        self._fetcher = fetcher
        self._session_factory = session_factory
        self._on_change = on_change
        self._lock = threading.RLock()
        self._generation = 0
        self._runtime: ModelRuntimeState | None = None
        self.select(descriptor or catalog.MODEL_OPTIONS[0])

    # ----- read side ------------------------------------------------------
    @property
    def descriptor(self) -> ModelDescriptor:
        return self._runtime.descriptor

    @property
    def state(self) -> ModelState:
        return self._runtime.state

    @property
    def progress(self) -> float:
        return self._runtime.progress

    @property
    def error(self) -> EmbedError | None:
        return self._runtime.error

    @property
    def is_ready(self) -> bool:
        return self._runtime.state is ModelState.READY

    def snapshot(self) -> ModelRuntimeState:
        with self._lock:
            return dataclasses.replace(self._runtime)

    def active(self) -> ActiveModel | None:
        with self._lock:
            rt = self._runtime
            if rt.state is not ModelState.READY or rt.session is None or rt.vocabulary is None:
                return None
            return ActiveModel(rt.descriptor, rt.vocabulary, rt.session, self._generation)

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def model_path(self, descriptor: ModelDescriptor | None = None) -> Path:
        return catalog.model_path(descriptor or self.descriptor, self.cache_dir)

    def tokenizer_dir(self, descriptor: ModelDescriptor | None = None) -> Path:
        return catalog.tokenizer_dir(descriptor or self.descriptor, self.cache_dir)

    def check_status(self, descriptor: ModelDescriptor | None = None) -> bool:
        """True when the model file and the tokenizer files are all cached."""
        desc = descriptor or self.descriptor
        tok = self.tokenizer_dir(desc)
        required = (
            self.model_path(desc),
            tok / "tokenizer_config.json",
            tok / "tokenizer.json",
        )
        return all(p.is_file() for p in required)

    # ----- internals ------------------------------------------------------
    def _notify(self, snapshot: ModelRuntimeState | None) -> None:
        if snapshot is not None and self._on_change is not None:
            self._on_change(snapshot)

    def _commit(self, generation: int, **changes) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            previous = self._runtime.state
            for name, value in changes.items():
                setattr(self._runtime, name, value)
            snapshot = dataclasses.replace(self._runtime)
        if "state" in changes and changes["state"] is not previous:
            logger.info(
                "%s: %s -> %s", snapshot.descriptor.label, previous.value, snapshot.state.value
            )
        self._notify(snapshot)
        return True

    def _set_progress(self, generation: int, value: float) -> None:
        with self._lock:
            if generation != self._generation:
                raise _Superseded()
            # progress never moves backwards within one download
            value = min(1.0, max(self._runtime.progress, value))
            self._runtime.progress = value
            snapshot = dataclasses.replace(self._runtime)
        self._notify(snapshot)

    def _fail(self, generation: int, error: EmbedError) -> Result:
        logger.error("%s", error)
        committed = self._commit(
            generation,
            state=ModelState.FAILED,
            error=error,
            session=None,
            vocabulary=None,
            progress=0.0,
        )
        if not committed:
            return self._superseded(error.operation, error.model_label)
        return err(error.kind, error.message, error.operation, error.model_label)

    def _superseded(self, operation: str, label: str | None) -> Result:
        logger.info("%s for %s discarded: selection changed", operation, label)
        return err(ErrorKind.SUPERSEDED, "model selection changed", operation, label)

    def _activate(self, descriptor: ModelDescriptor | None) -> tuple[ModelDescriptor, int]:
        if descriptor is not None and descriptor.key != self.descriptor.key:
            self.select(descriptor)
        with self._lock:
            return self._runtime.descriptor, self._generation

    def _reset(self, descriptor: ModelDescriptor) -> ModelRuntimeState:
        # caller holds the lock
        self._generation += 1
        if self._runtime is not None:
            _release(self._runtime.session)
            self._runtime.session = None
            self._runtime.vocabulary = None
        downloaded = self.check_status(descriptor)
        self._runtime = ModelRuntimeState(
            descriptor=descriptor,
            state=ModelState.DOWNLOADED if downloaded else ModelState.NOT_DOWNLOADED,
            progress=1.0 if downloaded else 0.0,
        )
        return dataclasses.replace(self._runtime)

    # ----- transitions ----------------------------------------------------
    def select(self, descriptor: ModelDescriptor) -> Result[ModelState]:
        """Drop the current session and make ``descriptor`` the active model."""
        with self._lock:
            snapshot = self._reset(descriptor)
        logger.info("selected %s (%s)", descriptor.label, snapshot.state.value)
        self._notify(snapshot)
        return Ok(snapshot.state)

    def download(self, descriptor: ModelDescriptor | None = None) -> Result[ModelDescriptor]:
        desc, gen = self._activate(descriptor)
        return self._download(desc, gen)

    def _download(self, desc: ModelDescriptor, gen: int) -> Result[ModelDescriptor]:
        # commits only under gen, never re-selects
        if not self._commit(gen, state=ModelState.DOWNLOADING, progress=0.0, error=None):
            return self._superseded("download", desc.label)

        urls = catalog.artifact_urls(desc, self.base_url)
        paths = catalog.artifact_paths(desc, self.cache_dir)
        total = len(paths)
        done = 0

        def on_progress(written: int, expected: int) -> None:
            fraction = written / expected if expected > 0 else 0.0
            self._set_progress(gen, (done + min(max(fraction, 0.0), 1.0)) / total)

        logger.info("downloading %d files for %s", total, desc.label)
        try:
            for url, path in zip(urls, paths):
                self._fetcher(
                    url, path, on_progress=on_progress, retries=self.retries, timeout=self.timeout
                )
                done += 1
                self._set_progress(gen, done / total)
        except _Superseded:
            return self._superseded("download", desc.label)
        except EmbedError as e:
            return self._fail(gen, e.with_context("download", desc.label))
        except OSError as e:
            error = EmbedError(
                ErrorKind.DOWNLOAD_FAILURE, str(e), operation="download", model_label=desc.label
            )
            return self._fail(gen, error)

        if not self._commit(gen, state=ModelState.DOWNLOADED, progress=1.0):
            return self._superseded("download", desc.label)
        logger.info("model downloaded: %s", desc.label)
        return Ok(desc)

    def initialize(self, descriptor: ModelDescriptor | None = None) -> Result[ModelDescriptor]:
        desc, gen = self._activate(descriptor)
        current = self.active()
        if current is not None and current.generation == gen:
            return Ok(desc)

        if not self.check_status(desc):
            logger.info("%s not downloaded, downloading first", desc.label)
            downloaded = self._download(desc, gen)
            if not downloaded.is_ok:
                return downloaded

        if not self._commit(gen, state=ModelState.INITIALIZING, error=None):
            return self._superseded("initialize", desc.label)

        try:
            vocabulary = load_vocabulary(self.tokenizer_dir(desc))
        except EmbedError as e:
            return self._fail(gen, e.with_context("initialize", desc.label))

        path = self.model_path(desc)
        try:
            session = self._session_factory(path)
        except Exception as e:  # engine-specific exception types
            error = EmbedError(
                ErrorKind.INITIALIZATION_FAILURE,
                f"cannot create session from {path.name}: {e}",
                operation="initialize",
                model_label=desc.label,
            )
            return self._fail(gen, error)

        if not self._commit(
            gen,
            state=ModelState.READY,
            vocabulary=vocabulary,
            session=session,
            progress=1.0,
        ):
            _release(session)
            return self._superseded("initialize", desc.label)
        logger.info("model initialized: %s", desc.label)
        return Ok(desc)

    def retry_from_failed(self) -> Result[ModelState]:
        """Re-run initialize (and the download it implies) after a failure."""
        if self.state is not ModelState.FAILED:
            return Ok(self.state)
        result = self.initialize()
        if not result.is_ok:
            return result
        return Ok(self.state)

    def delete(self, descriptor: ModelDescriptor | None = None) -> Result[ModelDescriptor]:
        """Remove the model file; tokenizer files stay, they are shared per repo."""
        desc = descriptor or self.descriptor
        path = self.model_path(desc)
        try:
            path.unlink(missing_ok=True)
            path.with_name(path.name + ".part").unlink(missing_ok=True)
        except OSError as e:
            return err(ErrorKind.CACHE_FAILURE, str(e), "delete", desc.label)
        logger.info("deleted %s", path)

        if desc.key == self.descriptor.key:
            with self._lock:
                snapshot = self._reset(desc)
            self._notify(snapshot)
        return Ok(desc)

    def close(self) -> None:
        with self._lock:
            snapshot = self._reset(self._runtime.descriptor)
        self._notify(snapshot)

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()
