"""
Static catalog of the ONNX exports we know how to run, and the cache layout
they are stored under.
"""

import platform
from dataclasses import dataclass
from pathlib import Path

from pocket_embed.tokenizer import TOKENIZER_FILES

BASE_REPO = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
MAX_LENGTH = 128


@dataclass(frozen=True)
class ModelDescriptor:
    label: str
    repo: str
    file_name: str  # path inside the repo, e.g. "onnx/model_O1.onnx"
    max_length: int
    description: str
    needs_segment_ids: bool = True

    @property
    def key(self) -> str:
        return self.file_name


def _variant(label: str, file_name: str, description: str) -> ModelDescriptor:
    return ModelDescriptor(
        label=label,
        repo=BASE_REPO,
        file_name=file_name,
        max_length=MAX_LENGTH,
        description=description,
    )


def quantized_variant(machine: str | None = None) -> ModelDescriptor:
    """The one quantized export that fits the host CPU."""
    machine = (machine if machine is not None else platform.machine()).lower()
    if machine in {"arm64", "aarch64", "armv8", "armv8l"}:
        return _variant(
            "Quantized for ARM64",
            "onnx/model_qint8_arm64.onnx",
            "8-bit quantized for ARM64 processors",
        )
    return _variant(
        "Quantized (General)",
        "onnx/model_quint8_avx2.onnx",
        "8-bit quantized for general use (AVX2)",
    )


def build_catalog(machine: str | None = None) -> tuple[ModelDescriptor, ...]:
    return (
        _variant("Optimized Level 1", "onnx/model_O1.onnx", "Optimization level 1"),
        _variant("Optimized Level 2", "onnx/model_O2.onnx", "Optimization level 2"),
        _variant("Optimized Level 3", "onnx/model_O3.onnx", "Optimization level 3"),
        _variant(
            "Optimized Level 4 (FP16)",
            "onnx/model_O4.onnx",
            "Optimization level 4 (half precision)",
        ),
        quantized_variant(machine),
    )


MODEL_OPTIONS = build_catalog()


def find_model(name: str, options=MODEL_OPTIONS) -> ModelDescriptor:
    """Look a descriptor up by catalog index, label or file name."""
    if name.isdigit():
        idx = int(name)
        if 0 <= idx < len(options):
            return options[idx]
    for desc in options:
        if name in (desc.label, desc.file_name):
            return desc
    raise KeyError(f"unknown model {name!r}")


# ── CACHE LAYOUT ──────────────────────────────────────────────────────
def _flat(path: str) -> str:
    return path.replace("/", "_")


def model_dir(desc: ModelDescriptor, cache_dir: Path) -> Path:
    return Path(cache_dir) / "models" / _flat(desc.repo)


def model_path(desc: ModelDescriptor, cache_dir: Path) -> Path:
    return model_dir(desc, cache_dir) / _flat(desc.file_name)


def tokenizer_dir(desc: ModelDescriptor, cache_dir: Path) -> Path:
    # tokenizer files are shared by every export of the same repo
    return Path(cache_dir) / "tokenizer" / _flat(desc.repo)


def artifact_urls(desc: ModelDescriptor, base_url: str) -> list[str]:
    """Tokenizer files first, model last."""
    root = f"{base_url.rstrip('/')}/{desc.repo}/resolve/main"
    return [f"{root}/{name}" for name in (*TOKENIZER_FILES, desc.file_name)]


def artifact_paths(desc: ModelDescriptor, cache_dir: Path) -> list[Path]:
    tok = tokenizer_dir(desc, cache_dir)
    return [tok / name for name in TOKENIZER_FILES] + [model_path(desc, cache_dir)]
