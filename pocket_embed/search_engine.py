"""One-stop helper: embed a query, read the corpus, rank it."""

import logging
import sqlite3
import time
from dataclasses import dataclass, field

from pocket_embed.embedder import Embedding, EmbeddingPipeline
from pocket_embed.errors import ErrorKind
from pocket_embed.ranking import SimilarityResult, rank
from pocket_embed.result import Ok, Result, err

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResponse:
    results: list[SimilarityResult] = field(default_factory=list)
    embedding: Embedding | None = None
    malformed: int = 0
    mismatched: int = 0
    corpus_size: int = 0
    elapsed_ms: float = 0.0


class SearchEngine:
    def __init__(self, manager, store, pipeline: EmbeddingPipeline | None = None) -> None:
        self.manager = manager
        self.store = store
        self.pipeline = pipeline or EmbeddingPipeline(manager)

    # ----- Corpus -----------------------------------------------------------
    def corpus_size(self) -> Result[int]:
        try:
            return Ok(self.store.count_rows())
        except sqlite3.Error as e:
            return err(ErrorKind.STORAGE_UNAVAILABLE, str(e), "count_rows", self.manager.descriptor.label)

    # ----- Query ------------------------------------------------------------
    def query(self, text: str, k: int = 3) -> Result[SearchResponse]:
        embedded = self.pipeline.embed(text)
        if not embedded.is_ok:
            return embedded
        return self.rank_vector(embedded.value, k)

    def rank_vector(self, embedding: Embedding, k: int = 3) -> Result[SearchResponse]:
        start = time.perf_counter()
        try:
            corpus = self.store.select_all_with_embeddings()
        except sqlite3.Error as e:
            return err(ErrorKind.STORAGE_UNAVAILABLE, str(e), "search", embedding.model_label)

        ranked = rank(embedding.vector, corpus, k)
        elapsed_ms = (time.perf_counter() - start) * 1000
        if not corpus:
            logger.info("corpus is empty, nothing to rank")
        logger.info(
            "ranked %d rows in %.1f ms, returning %d", len(corpus), elapsed_ms, len(ranked)
        )
        return Ok(
            SearchResponse(
                results=ranked.results,
                embedding=embedding,
                malformed=ranked.malformed,
                mismatched=ranked.mismatched,
                corpus_size=len(corpus),
                elapsed_ms=elapsed_ms,
            )
        )
