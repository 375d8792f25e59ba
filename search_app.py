"""
Command line front end: pick a model, download it, embed text and search
the local corpus.

    pocket-embed models
    pocket-embed download 0
    pocket-embed search 0 "how do I reset my password" -k 3
    pocket-embed ingest 0 sample_docs/
    pocket-embed show 12
"""

import argparse
import logging
import sys
from pathlib import Path

from tqdm.auto import tqdm

from general.config import Settings, load_settings
from general.db import VectorStore, add_entry
from general.log import setup_logging
from pocket_embed.catalog import MODEL_OPTIONS, find_model
from pocket_embed.embedder import EmbeddingPipeline
from pocket_embed.lifecycle import ModelManager, ModelState
from pocket_embed.ranking import parse_embedding
from pocket_embed.search_engine import SearchEngine

logger = logging.getLogger("search_app")

INGEST_EXTS = (".txt", ".md")


class _ProgressBar:
    """Feeds ModelManager progress snapshots into a tqdm bar."""

    def __init__(self) -> None:
        self._bar = None

    def __call__(self, snapshot) -> None:
        if snapshot.state is ModelState.DOWNLOADING:
            if self._bar is None:
                self._bar = tqdm(total=100, desc=f"Downloading {snapshot.descriptor.label}", unit="%")
            self._bar.n = round(snapshot.progress * 100, 1)
            self._bar.refresh()
        elif self._bar is not None:
            self._bar.close()
            self._bar = None


def _manager(settings: Settings, model: str, show_progress: bool = True) -> ModelManager:
    return ModelManager(
        find_model(model),
        settings.cache_dir,
        base_url=settings.hf_base_url,
        retries=settings.download_retries,
        timeout=settings.download_timeout,
        on_change=_ProgressBar() if show_progress else None,
    )


def _preview(vec, n: int = 8) -> str:
    head = ", ".join(f"{x:.4f}" for x in vec[:n])
    return f"[{head}{', ...' if len(vec) > n else ''}]"


def _fail(result) -> int:
    print(f"error: {result.error}", file=sys.stderr)
    return 1


# ----- commands -------------------------------------------------------------
def cmd_models(args, settings: Settings) -> int:
    with ModelManager(MODEL_OPTIONS[0], settings.cache_dir) as mgr:
        for idx, desc in enumerate(MODEL_OPTIONS):
            mark = "x" if mgr.check_status(desc) else " "
            print(f"[{mark}] {idx}  {desc.label:<26} {desc.file_name}  ({desc.description})")
    return 0


def cmd_download(args, settings: Settings) -> int:
    with _manager(settings, args.model) as mgr:
        result = mgr.download()
        if not result.is_ok:
            return _fail(result)
        print(f"downloaded {mgr.descriptor.label} to {mgr.model_path()}")
    return 0


def cmd_delete(args, settings: Settings) -> int:
    with _manager(settings, args.model, show_progress=False) as mgr:
        result = mgr.delete()
        if not result.is_ok:
            return _fail(result)
        print(f"deleted {mgr.descriptor.label}")
    return 0


def cmd_embed(args, settings: Settings) -> int:
    with _manager(settings, args.model) as mgr:
        ready = mgr.initialize()
        if not ready.is_ok:
            return _fail(ready)
        result = EmbeddingPipeline(mgr, pooling=settings.pooling).embed(args.text)
        if not result.is_ok:
            return _fail(result)
        emb = result.value
        print(f"dim={emb.dim}  runtime={emb.elapsed_ms:.1f} ms")
        print(_preview(emb.vector))
    return 0


def cmd_search(args, settings: Settings) -> int:
    k = args.k or settings.top_k
    with _manager(settings, args.model) as mgr, VectorStore(settings.db_path) as store:
        ready = mgr.initialize()
        if not ready.is_ok:
            return _fail(ready)
        engine = SearchEngine(mgr, store, EmbeddingPipeline(mgr, pooling=settings.pooling))
        result = engine.query(args.text, k)
        if not result.is_ok:
            return _fail(result)
        resp = result.value
        if not resp.results:
            print("No similar entries found.")
        for hit in resp.results:
            print(f"{hit.score: .4f}  #{hit.id}  {hit.text[:80]}")
        if resp.malformed or resp.mismatched:
            print(
                f"(skipped {resp.malformed} malformed and {resp.mismatched} "
                f"dimension-mismatched rows)",
                file=sys.stderr,
            )
    return 0


def cmd_ingest(args, settings: Settings) -> int:
    folder = Path(args.folder)
    files = sorted(p for p in folder.rglob("*") if p.suffix.lower() in INGEST_EXTS)
    if not files:
        print(f"no {'/'.join(INGEST_EXTS)} files under {folder}", file=sys.stderr)
        return 1
    with _manager(settings, args.model) as mgr, VectorStore(settings.db_path) as store:
        ready = mgr.initialize()
        if not ready.is_ok:
            return _fail(ready)
        pipeline = EmbeddingPipeline(mgr, pooling=settings.pooling)
        added = 0
        for fp in tqdm(files, desc="Embedding files", unit="file"):
            txt = fp.read_text(encoding="utf-8", errors="ignore")
            if not txt.strip():
                continue
            result = pipeline.embed(txt)
            if not result.is_ok:
                logger.warning("skipping %s: %s", fp, result.error)
                continue
            add_entry(store.con, txt, result.value.vector, source=str(fp))
            added += 1
        print(f"ingested {added} of {len(files)} files into {settings.db_path}")
    return 0


def cmd_show(args, settings: Settings) -> int:
    with VectorStore(settings.db_path) as store:
        entry = store.get_entry(args.id)
    if entry is None:
        print(f"no entry with id {args.id}", file=sys.stderr)
        return 1
    print(f"#{entry.id}  {entry.text}")
    vec = parse_embedding(entry.embedding)
    if vec is None:
        print("embedding: malformed")
    else:
        print(f"dim={vec.size}")
        print(_preview(vec))
    return 0


def cmd_count(args, settings: Settings) -> int:
    with VectorStore(settings.db_path) as store:
        print(store.count_rows())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pocket-embed", description=__doc__.splitlines()[1])
    parser.add_argument("--log-level", default=None, help="override POCKET_EMBED_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("models", help="list the model catalog").set_defaults(func=cmd_models)
    sub.add_parser("count", help="rows in the vector store").set_defaults(func=cmd_count)

    p = sub.add_parser("show", help="print one stored row by id")
    p.add_argument("id", type=int)
    p.set_defaults(func=cmd_show)

    for name, func, help_ in (
        ("download", cmd_download, "fetch model + tokenizer files"),
        ("delete", cmd_delete, "remove a cached model file"),
    ):
        p = sub.add_parser(name, help=help_)
        p.add_argument("model", help="catalog index or label")
        p.set_defaults(func=func)

    p = sub.add_parser("embed", help="print the embedding of a text")
    p.add_argument("model")
    p.add_argument("text")
    p.set_defaults(func=cmd_embed)

    p = sub.add_parser("search", help="rank stored rows against a text")
    p.add_argument("model")
    p.add_argument("text")
    p.add_argument("-k", type=int, default=None, help="number of results")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("ingest", help="embed .txt/.md files into the store")
    p.add_argument("model")
    p.add_argument("folder")
    p.set_defaults(func=cmd_ingest)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(args.log_level or settings.log_level)
    try:
        return args.func(args, settings)
    except KeyError as e:
        print(f"error: {e.args[0]}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
