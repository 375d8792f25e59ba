# ── stdlib / third-party ──────────────────────────────────────────────
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import onnxruntime as ort

from pocket_embed.errors import EmbedError, ErrorKind
from pocket_embed.result import Ok, Result, err
from pocket_embed.tokenizer import TokenizedInput, tokenize

logger = logging.getLogger(__name__)

POOLING_MODES = ("mean", "first")


# ── SESSION ───────────────────────────────────────────────────────────
def create_session(model_path: str | Path) -> ort.InferenceSession:
    opts = ort.SessionOptions()
    opts.intra_op_num_threads = os.cpu_count() or 1
    opts.inter_op_num_threads = 1
    opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    session = ort.InferenceSession(
        Path(model_path).as_posix(),
        sess_options=opts,
        providers=["CPUExecutionProvider"],
    )
    logger.debug("session inputs : %s", [(i.name, i.shape, i.type) for i in session.get_inputs()])
    logger.debug("session outputs: %s", [(o.name, o.shape, o.type) for o in session.get_outputs()])
    return session


# ── OUTPUT SHAPES ─────────────────────────────────────────────────────
@dataclass(frozen=True)
class FlatVector:
    """[1, D] or [1, 1, D]: the model already pooled."""

    dim: int


@dataclass(frozen=True)
class TokenSequence:
    """[1, N, D] with N > 1: one vector per token position."""

    tokens: int
    dim: int


OutputShape = FlatVector | TokenSequence


def interpret_shape(shape) -> OutputShape:
    shape = tuple(int(d) for d in shape)
    if len(shape) == 3 and shape[0] == 1 and shape[1] == 1:
        return FlatVector(shape[2])
    if len(shape) == 2 and shape[0] == 1:
        return FlatVector(shape[1])
    if len(shape) == 3 and shape[0] == 1 and shape[1] > 1:
        return TokenSequence(shape[1], shape[2])
    raise EmbedError(
        ErrorKind.UNRECOGNIZED_OUTPUT_SHAPE, f"unexpected output tensor dimensions: {list(shape)}"
    )


def pool(output: np.ndarray, attention_mask: np.ndarray, mode: str = "mean") -> np.ndarray:
    """Reduce the model output to a single float32 vector."""
    shape = interpret_shape(output.shape)
    if isinstance(shape, FlatVector):
        return output.reshape(shape.dim).astype(np.float32)
    # TokenSequence
    tokens = output.reshape(shape.tokens, shape.dim)
    if mode == "first":
        logger.warning("per-token output %s, using first-token pooling", output.shape)
        return tokens[0].astype(np.float32)
    mask = np.asarray(attention_mask, dtype=np.float32).reshape(-1)[: shape.tokens]
    if mask.size != shape.tokens or mask.sum() == 0:
        # mask does not line up with the output, average every position
        return tokens.mean(axis=0).astype(np.float32)
    summed = (tokens * mask[:, None]).sum(axis=0)
    return (summed / mask.sum()).astype(np.float32)


# ── TENSORS ───────────────────────────────────────────────────────────
def build_feeds(encoded: TokenizedInput, max_length: int, segment_ids: bool) -> dict[str, np.ndarray]:
    columns = {
        "input_ids": encoded.input_ids,
        "attention_mask": encoded.attention_mask,
    }
    if segment_ids:
        columns["token_type_ids"] = encoded.segment_ids or [0] * len(encoded.input_ids)

    feeds = {}
    for name, values in columns.items():
        if len(values) != max_length:
            raise EmbedError(
                ErrorKind.INFERENCE_FAILURE,
                f"tensor {name} has {len(values)} entries, expected {max_length}",
            )
        feeds[name] = np.asarray(values, dtype=np.int64).reshape(1, max_length)
    return feeds


def _declared_inputs(session) -> set[str] | None:
    get_inputs = getattr(session, "get_inputs", None)
    if get_inputs is None:
        return None
    return {i.name for i in get_inputs()}


# ── PIPELINE ──────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Embedding:
    vector: np.ndarray
    elapsed_ms: float
    model_label: str

    @property
    def dim(self) -> int:
        return int(self.vector.shape[0])


class EmbeddingPipeline:
    """
    text → tokens → int64 tensors → session.run → pooled float32 vector.

    Reads the session and vocabulary from a ModelManager; never mutates it.
    """

    def __init__(self, manager, pooling: str = "mean") -> None:
        if pooling not in POOLING_MODES:
            raise ValueError(f"pooling must be one of {POOLING_MODES}, got {pooling!r}")
        self.manager = manager
        self.pooling = pooling

    def embed(self, text: str) -> Result[Embedding]:
        active = self.manager.active()
        if active is None:
            desc = self.manager.descriptor
            return err(
                ErrorKind.EMBEDDING_UNAVAILABLE,
                f"model is {self.manager.state.value}, initialize it first",
                "embed",
                desc.label if desc else None,
            )

        label = active.descriptor.label
        start = time.perf_counter()
        try:
            vector = self._run(text, active)
        except EmbedError as e:
            logger.error("embedding failed: %s", e)
            return err(e.kind, e.message, "embed", label)
        except Exception as e:  # the engine raises its own exception types
            logger.error("inference engine error: %s", e)
            return err(ErrorKind.INFERENCE_FAILURE, str(e) or type(e).__name__, "embed", label)
        elapsed_ms = (time.perf_counter() - start) * 1000

        if not self.manager.is_current(active.generation):
            return err(ErrorKind.SUPERSEDED, "model changed during inference", "embed", label)

        logger.debug("embedded %d chars into %d dims in %.1f ms", len(text), vector.size, elapsed_ms)
        return Ok(Embedding(vector=vector, elapsed_ms=elapsed_ms, model_label=label))

    def _run(self, text: str, active) -> np.ndarray:
        desc = active.descriptor
        encoded = tokenize(
            text,
            active.vocabulary,
            desc.max_length,
            segment_ids=desc.needs_segment_ids,
        )
        feeds = build_feeds(encoded, desc.max_length, desc.needs_segment_ids)
        mask = feeds["attention_mask"]
        declared = _declared_inputs(active.session)
        if declared is not None:
            feeds = {name: t for name, t in feeds.items() if name in declared}

        outputs = active.session.run(None, feeds)
        if not outputs:
            raise EmbedError(ErrorKind.INFERENCE_FAILURE, "no output data found in model results")
        output = np.asarray(outputs[0])
        if output.dtype == object or output.size == 0:
            raise EmbedError(ErrorKind.INFERENCE_FAILURE, "model output is not a numeric tensor")
        return pool(output, mask, self.pooling)
