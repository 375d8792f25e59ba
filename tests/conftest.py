import json
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from pocket_embed.catalog import ModelDescriptor
from pocket_embed.errors import EmbedError, ErrorKind
from pocket_embed.lifecycle import ModelManager
from pocket_embed.tokenizer import Vocabulary

VOCAB = {
    "[PAD]": 0,
    "hel": 1,
    "##lo": 2,
    "[UNK]": 3,
    "[CLS]": 4,
    "[SEP]": 5,
    "world": 6,
    "un": 7,
    "##believ": 8,
    "##able": 9,
}


@pytest.fixture
def vocab() -> Vocabulary:
    return Vocabulary.from_mapping(VOCAB)


@pytest.fixture
def descriptor() -> ModelDescriptor:
    return ModelDescriptor(
        label="Tiny Test Model",
        repo="acme/tiny-model",
        file_name="onnx/model.onnx",
        max_length=8,
        description="fixture model",
        needs_segment_ids=True,
    )


@pytest.fixture
def other_descriptor() -> ModelDescriptor:
    return ModelDescriptor(
        label="Other Test Model",
        repo="acme/tiny-model",
        file_name="onnx/model_O2.onnx",
        max_length=8,
        description="second fixture model",
        needs_segment_ids=False,
    )


def tokenizer_payloads(vocab=VOCAB, lowercase=True) -> dict[str, str]:
    return {
        "tokenizer_config.json": json.dumps(
            {
                "do_lower_case": lowercase,
                "unk_token": "[UNK]",
                "pad_token": {"content": "[PAD]", "lstrip": False},
                "cls_token": "[CLS]",
                "sep_token": "[SEP]",
            }
        ),
        "tokenizer.json": json.dumps({"model": {"type": "WordPiece", "vocab": vocab}}),
        "special_tokens_map.json": json.dumps({"unk_token": "[UNK]"}),
    }


class FakeFetcher:
    """Stands in for general.model_download.fetch."""

    def __init__(self, payloads: dict[str, str] | None = None, fail_on: str | None = None):
        self.payloads = payloads or tokenizer_payloads()
        self.fail_on = fail_on
        self.calls: list[str] = []
        self.progress: list[tuple[int, int]] = []

    def __call__(self, url, dest, on_progress=None, retries=3, timeout=30.0):
        dest = Path(dest)
        self.calls.append(url)
        if self.fail_on and url.endswith(self.fail_on):
            raise EmbedError(ErrorKind.DOWNLOAD_FAILURE, f"failed to download {url}. Status: 404")
        if dest.exists():
            if on_progress:
                on_progress(1, 1)
            return dest
        name = url.rsplit("/", 1)[1]
        body = self.payloads.get(name, "onnx-bytes").encode()
        dest.parent.mkdir(parents=True, exist_ok=True)
        for written in (len(body) // 2, len(body)):
            if on_progress:
                on_progress(written, len(body))
                self.progress.append((written, len(body)))
        dest.write_bytes(body)
        return dest


class FakeSession:
    """Minimal InferenceSession: returns a fixed output and records feeds."""

    def __init__(self, output=None, inputs=("input_ids", "attention_mask", "token_type_ids")):
        self.output = np.ones((1, 4), dtype=np.float32) if output is None else output
        self.inputs = inputs
        self.feeds = []
        self.closed = False

    def get_inputs(self):
        return [SimpleNamespace(name=n) for n in self.inputs]

    def run(self, output_names, feeds):
        self.feeds.append(feeds)
        if isinstance(self.output, Exception):
            raise self.output
        return [self.output]

    def close(self):
        self.closed = True


class SessionFactory:
    def __init__(self, session=None, error: Exception | None = None):
        self.session = session or FakeSession()
        self.error = error
        self.paths: list[Path] = []

    def __call__(self, path):
        self.paths.append(Path(path))
        if self.error is not None:
            raise self.error
        return self.session


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def session_factory() -> SessionFactory:
    return SessionFactory()


@pytest.fixture
def manager(tmp_path, descriptor, fetcher, session_factory) -> ModelManager:
    mgr = ModelManager(
        descriptor,
        tmp_path / "cache",
        base_url="https://hf.test",
        fetcher=fetcher,
        session_factory=session_factory,
    )
    yield mgr
    mgr.close()
