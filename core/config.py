"""
Core Configuration and Services
Consolidated configuration settings and service wiring for the docchat service
"""

import logging
import os
from functools import lru_cache
from typing import List, Literal

from fastapi import FastAPI, Request
from openai import AsyncOpenAI
from pydantic_settings import BaseSettings, SettingsConfigDict
from qdrant_client import QdrantClient

logger = logging.getLogger(__name__)

BASE_PATH = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=f"{BASE_PATH}/.env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    ENVIRONMENT: Literal["dev", "pro"] = "dev"
    PROJECT_NAME: str = "docchat"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Qdrant
    QDRANT_MODE: Literal["cloud", "embedded", "memory"] = "cloud"
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_PATH: str = "./qdrant_data"
    QDRANT_COLLECTION: str = "chats_docs_chunks"
    EMBEDDING_DIM: int = 1536
    LOG_QDRANT_HTTP: str = "0"

    # OpenAI
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    CLASSIFIER_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE_DEFAULT: float = 0.3
    LLM_MAX_TOKENS: int = 1200
    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # Pipeline tuning
    HISTORY_TURNS: int = 15
    RETRIEVAL_TOP_K: int = 5
    CHUNK_SIZE: int = 500
    CHUNK_OVERLAP: int = 50
    EMBED_CONCURRENCY: int = 4
    SUMMARY_MAX_CHARS: int = 12000

    # Timeouts (seconds) for every external round trip
    CLASSIFY_TIMEOUT_SECS: float = 10.0
    EMBED_TIMEOUT_SECS: float = 20.0
    GENERATION_IDLE_TIMEOUT_SECS: float = 60.0
    QDRANT_TIMEOUT_SECS: float = 10.0
    STORE_TIMEOUT_SECS: float = 10.0
    FETCH_TIMEOUT_SECS: float = 20.0

    # Conversation history store
    DATABASE_URL: str = "sqlite+aiosqlite:///./docchat.sqlite"

    # Administrative operations are disabled unless a token is configured
    ADMIN_TOKEN: str | None = None

    # CORS
    CORS_ALLOWED_ORIGINS: List[str] = [
        "http://127.0.0.1:8000",
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_EXPOSE_HEADERS: List[str] = ["X-Request-ID"]

    # FastAPI
    FASTAPI_API_V1_PATH: str = "/api/v1"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def get_qdrant_client() -> QdrantClient:
    """Create Qdrant client based on settings configuration."""
    if settings.QDRANT_MODE == "memory":
        return QdrantClient(":memory:")
    if settings.QDRANT_MODE == "embedded":
        return QdrantClient(path=settings.QDRANT_PATH)
    return QdrantClient(
        url=settings.QDRANT_URL,
        api_key=settings.QDRANT_API_KEY or None,
        prefer_grpc=False,
        timeout=int(settings.QDRANT_TIMEOUT_SECS),
    )


def get_llm_client() -> AsyncOpenAI:
    """Create the OpenAI client shared by chat and embedding adapters."""
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=max(settings.GENERATION_IDLE_TIMEOUT_SECS, settings.EMBED_TIMEOUT_SECS),
        max_retries=2,
    )


def wire_services(app: FastAPI) -> None:
    """Build every collaborator once and inject them into the chat pipeline on app.state."""
    from app.modules.docchat.services.embeddings import OpenAIEmbedder
    from app.modules.docchat.services.generator import GeneratorAdapter
    from app.modules.docchat.services.ingestion.fetcher import HtmlDocumentFetcher
    from app.modules.docchat.services.ingestion.ingestor import Ingestor
    from app.modules.docchat.services.llm import OpenAIChatModel
    from app.modules.docchat.services.classifier import Classifier
    from app.modules.docchat.services.persistence import PersistenceCoordinator
    from app.modules.docchat.services.rag.pipeline import ChatPipeline
    from app.modules.docchat.services.retriever import Retriever
    from app.modules.docchat.services.vector_store import QdrantVectorIndex
    from app.services.memory.db import SessionLocal
    from app.services.memory.store import ConversationStore

    logger.info("Wiring docchat services...")

    app.state.settings = settings
    app.state.qdrant = get_qdrant_client()
    app.state.llm_client = get_llm_client()

    llm = OpenAIChatModel(app.state.llm_client, model=settings.LLM_MODEL)
    classifier_llm = OpenAIChatModel(
        app.state.llm_client, model=settings.CLASSIFIER_MODEL, temperature=0.0, max_tokens=300
    )
    embedder = OpenAIEmbedder(app.state.llm_client, model=settings.EMBEDDING_MODEL)
    index = QdrantVectorIndex(
        app.state.qdrant,
        collection=settings.QDRANT_COLLECTION,
        dim=settings.EMBEDDING_DIM,
        timeout=settings.QDRANT_TIMEOUT_SECS,
    )
    store = ConversationStore(SessionLocal, timeout=settings.STORE_TIMEOUT_SECS)

    # Ensure collection (fail-soft)
    try:
        index.ensure_collection()
        logger.info("Qdrant collection initialized successfully")
    except Exception as e:
        logger.warning(f"Qdrant collection initialization failed: {str(e)}")
        logger.info("Application will continue without Qdrant initialization")

    app.state.pipeline = ChatPipeline(
        store=store,
        classifier=Classifier(classifier_llm, timeout=settings.CLASSIFY_TIMEOUT_SECS),
        retriever=Retriever(embedder, index, embed_timeout=settings.EMBED_TIMEOUT_SECS),
        ingestor=Ingestor(
            HtmlDocumentFetcher(timeout=settings.FETCH_TIMEOUT_SECS),
            embedder,
            index,
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
            concurrency=settings.EMBED_CONCURRENCY,
            embed_timeout=settings.EMBED_TIMEOUT_SECS,
        ),
        generator=GeneratorAdapter(llm, idle_timeout=settings.GENERATION_IDLE_TIMEOUT_SECS),
        persistence=PersistenceCoordinator(
            store, embedder, index, embed_timeout=settings.EMBED_TIMEOUT_SECS
        ),
        history_turns=settings.HISTORY_TURNS,
        top_k=settings.RETRIEVAL_TOP_K,
        summary_max_chars=settings.SUMMARY_MAX_CHARS,
    )
    logger.info("Service container wiring completed successfully")


def get_pipeline(request: Request):
    """FastAPI dependency returning the wired chat pipeline."""
    return request.app.state.pipeline
