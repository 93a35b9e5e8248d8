import hashlib
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import pytest
from qdrant_client import QdrantClient
from sqlalchemy.pool import NullPool

os.environ.setdefault("QDRANT_MODE", "memory")
os.environ.setdefault("ADMIN_TOKEN", "")

from app.modules.docchat.services.classifier import Classifier
from app.modules.docchat.services.generator import GeneratorAdapter
from app.modules.docchat.services.ingestion.ingestor import Ingestor
from app.modules.docchat.services.persistence import PersistenceCoordinator
from app.modules.docchat.services.rag.pipeline import ChatPipeline
from app.modules.docchat.services.retriever import Retriever
from app.modules.docchat.services.vector_store import QdrantVectorIndex
from app.services.memory.db import make_sessionmaker
from app.services.memory.init_db import init_database
from app.services.memory.store import ConversationStore

DIM = 8
_TOKEN = re.compile(r"[a-z0-9]+")


class FakeLLM:
    """Scripted chat model. Records every call it receives."""

    def __init__(
        self,
        replies: Optional[List[Union[str, Exception]]] = None,
        chunks: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
        stream_error: Optional[Exception] = None,
    ):
        self.replies = list(replies or [])
        self.chunks = list(chunks if chunks is not None else ["Hello", " there", "."])
        self.fail_after = fail_after
        self.stream_error = stream_error or RuntimeError("provider dropped the stream")
        self.generate_calls: List[Dict] = []
        self.stream_calls: List[Dict] = []
        self.yielded = 0

    async def generate(self, contents, system_instruction=None) -> str:
        self.generate_calls.append({"contents": contents, "system_instruction": system_instruction})
        if not self.replies:
            raise AssertionError("unexpected generate call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream_generate(self, contents, system_instruction=None):
        self.stream_calls.append({"contents": contents, "system_instruction": system_instruction})
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise self.stream_error
            self.yielded += 1
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise self.stream_error


class HashingEmbedder:
    """Deterministic bag-of-words embedder; texts sharing words land close together."""

    def __init__(self, dim: int = DIM, fail: bool = False):
        self.dim = dim
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding provider down")
        vec = [0.01] * self.dim
        for token in _TOKEN.findall(text.lower()):
            h = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vec[h % self.dim] += 1.0
        return vec


class StaticFetcher:
    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = pages or {}
        self.calls: List[str] = []

    async def fetch_clean_text(self, url: str) -> str:
        self.calls.append(url)
        return self.pages.get(url, "")


@dataclass
class Env:
    pipeline: ChatPipeline
    store: ConversationStore
    index: QdrantVectorIndex
    llm: FakeLLM
    classifier_llm: FakeLLM
    embedder: HashingEmbedder
    fetcher: StaticFetcher
    engine: object

    async def close(self) -> None:
        await self.pipeline.drain()
        await self.engine.dispose()


def make_index() -> QdrantVectorIndex:
    index = QdrantVectorIndex(QdrantClient(":memory:"), collection="test_chunks", dim=DIM, timeout=5.0)
    index.ensure_collection()
    return index


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'docchat.sqlite'}"


@pytest.fixture
def build_env(db_url) -> Callable:
    """Factory assembling a pipeline over SQLite, in-memory Qdrant and fake providers.

    Call it inside the coroutine that uses it.
    """

    async def _build(
        llm: Optional[FakeLLM] = None,
        classifier_llm: Optional[FakeLLM] = None,
        embedder: Optional[HashingEmbedder] = None,
        fetcher: Optional[StaticFetcher] = None,
        index: Optional[QdrantVectorIndex] = None,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
    ) -> Env:
        engine, sessions = make_sessionmaker(db_url, poolclass=NullPool)
        assert await init_database(engine)

        llm = llm or FakeLLM()
        classifier_llm = classifier_llm or FakeLLM()
        embedder = embedder or HashingEmbedder()
        fetcher = fetcher or StaticFetcher()
        index = index or make_index()
        store = ConversationStore(sessions, timeout=5.0)

        pipeline = ChatPipeline(
            store=store,
            classifier=Classifier(classifier_llm, timeout=5.0),
            retriever=Retriever(embedder, index, embed_timeout=5.0),
            ingestor=Ingestor(
                fetcher, embedder, index, chunk_size=chunk_size, chunk_overlap=chunk_overlap, embed_timeout=5.0
            ),
            generator=GeneratorAdapter(llm, idle_timeout=5.0),
            persistence=PersistenceCoordinator(store, embedder, index, embed_timeout=5.0),
            history_turns=15,
            top_k=5,
        )
        return Env(pipeline, store, index, llm, classifier_llm, embedder, fetcher, engine)

    return _build


class Collector:
    def __init__(self, fail_after: Optional[int] = None):
        self.chunks: List[str] = []
        self.fail_after = fail_after

    async def __call__(self, chunk: str) -> None:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise ConnectionResetError("client went away")
        self.chunks.append(chunk)

    @property
    def text(self) -> str:
        return "".join(self.chunks)
