"""Shared fixtures: sample corpus and fake providers."""

from __future__ import annotations

from typing import List, Sequence

import numpy as np
import pytest

from uploadmatch.embedding.provider import EmbeddingPolicy
from uploadmatch.index.storage import SQLiteStore
from uploadmatch.models import SourceFile

KEYWORDS = ("resume", "passport", "tax")


class FakeEmbedder:
    """Keyword-indicator embeddings; records every batch it receives."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: List[List[str]] = []

    def embed(self, text: str) -> np.ndarray:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        self.batches.append(list(texts))
        if self.fail:
            raise RuntimeError("provider unavailable")
        return np.array(
            [[1.0 if word in text.lower() else 0.0 for word in KEYWORDS] for text in texts],
            dtype="float32",
        )


class FakeDescriber:
    def __init__(self, description: str = "", fail: bool = False) -> None:
        self.description = description
        self.fail = fail
        self.calls: List[str] = []

    def describe(self, image: bytes, context_text: str) -> str:
        self.calls.append(context_text)
        if self.fail:
            raise RuntimeError("vision unavailable")
        return self.description


def make_source(doc_id: str, text: str, *, type: str = "application/pdf", size: int = 100, mtime: float = 1.0) -> SourceFile:
    return SourceFile(
        id=doc_id,
        name=doc_id.rsplit("/", 1)[-1],
        type=type,
        size=size,
        mtime=mtime,
        text=text,
    )


@pytest.fixture
def sample_sources() -> List[SourceFile]:
    return [
        make_source("resume.pdf", "Jane Doe resume. Work experience, education and skills."),
        make_source("passport.jpg", "", type="image/jpeg"),
        make_source("taxes.pdf", "Tax return income statement for 2023"),
    ]


@pytest.fixture
def store(tmp_path):
    store = SQLiteStore(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def fast_policy() -> EmbeddingPolicy:
    return EmbeddingPolicy(timeout=5.0, retries=0, retry_delay=0.0, batch_size=2, concurrency=2, batch_interval=0.0)
