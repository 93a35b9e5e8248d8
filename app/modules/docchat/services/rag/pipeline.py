"""Request-level orchestration of the answer and document-grounding flows."""

from dataclasses import dataclass, field
from typing import Awaitable, List, Optional, Set
import asyncio
import logging

from app.modules.docchat.services.classifier import ClassificationResult, Classifier
from app.modules.docchat.services.errors import InvalidInput
from app.modules.docchat.services.generator import AnswerStream, GeneratorAdapter, Sink
from app.modules.docchat.services.ingestion.ingestor import Ingestor, require_https_url
from app.modules.docchat.services.persistence import PersistenceCoordinator, RecordedTurn
from app.modules.docchat.services.prompts import (
    ANSWER_SYSTEM,
    build_grounded_prompt,
    build_summary_instruction,
)
from app.modules.docchat.services.retriever import Retriever, build_context
from app.services.memory.store import ConversationStore

logger = logging.getLogger(__name__)


def require_prompt(prompt: Optional[str]) -> str:
    if prompt is None or not prompt.strip():
        raise InvalidInput("Prompt is required")
    return prompt


@dataclass
class PreparedAnswer:
    """Everything known about a request once its answer stream is open."""

    conversation_id: str
    user_text: str
    stream: AnswerStream
    classification: Optional[ClassificationResult] = None
    context: List[str] = field(default_factory=list)


class ChatPipeline:
    def __init__(
        self,
        store: ConversationStore,
        classifier: Classifier,
        retriever: Retriever,
        ingestor: Ingestor,
        generator: GeneratorAdapter,
        persistence: PersistenceCoordinator,
        history_turns: int = 15,
        top_k: int = 5,
        summary_max_chars: int = 12000,
    ):
        self.store = store
        self.classifier = classifier
        self.retriever = retriever
        self.ingestor = ingestor
        self.generator = generator
        self.persistence = persistence
        self.history_turns = history_turns
        self.top_k = top_k
        self.summary_max_chars = summary_max_chars
        self._background: Set[asyncio.Task] = set()

    async def prepare_answer(self, conversation_id: str, prompt: Optional[str]) -> PreparedAnswer:
        prompt = require_prompt(prompt)
        await self.store.require_conversation(conversation_id)

        history = await self.store.recent_turns(conversation_id, self.history_turns)
        result = await self.classifier.classify(conversation_id, prompt, history)

        context: List[str] = []
        if result.is_follow_up:
            context = await self.retriever.retrieve(conversation_id, result.resolved_question, self.top_k)

        if context:
            contents = build_grounded_prompt(result.resolved_question, build_context(context))
        else:
            contents = result.resolved_question

        stream = await self.generator.start(contents, ANSWER_SYSTEM)
        logger.info(
            f"[pipeline] {conversation_id}: answering kind={result.kind} context_chunks={len(context)}"
        )
        return PreparedAnswer(conversation_id, prompt, stream, result, context)

    async def prepare_grounding(self, conversation_id: str, prompt: Optional[str]) -> PreparedAnswer:
        url = require_https_url(require_prompt(prompt))
        await self.store.require_conversation(conversation_id)

        text = await self.ingestor.ingest(conversation_id, url)
        document = text[: self.summary_max_chars]
        stream = await self.generator.start(document, build_summary_instruction(url))
        logger.info(f"[pipeline] {conversation_id}: summarising {url} ({len(document)} chars)")
        return PreparedAnswer(conversation_id, url, stream)

    async def complete(self, prepared: PreparedAnswer) -> Optional[RecordedTurn]:
        """Persist whatever the stream produced, complete or partial."""
        text = prepared.stream.text
        if not text.strip():
            logger.warning(f"[pipeline] {prepared.conversation_id}: nothing generated, turn not recorded")
            return None
        if not prepared.stream.completed:
            logger.info(f"[pipeline] {prepared.conversation_id}: persisting partial answer ({len(text)} chars)")
        return await self.persistence.finalize(prepared.conversation_id, prepared.user_text, text)

    async def answer(self, conversation_id: str, prompt: Optional[str], sink: Sink) -> Optional[RecordedTurn]:
        prepared = await self.prepare_answer(conversation_id, prompt)
        await prepared.stream.pump(sink)
        return await self.complete(prepared)

    async def ground(self, conversation_id: str, prompt: Optional[str], sink: Sink) -> Optional[RecordedTurn]:
        prepared = await self.prepare_grounding(conversation_id, prompt)
        await prepared.stream.pump(sink)
        return await self.complete(prepared)

    def detach(self, work: Awaitable) -> asyncio.Task:
        """Run work in its own task so request cancellation cannot interrupt it."""
        task = asyncio.ensure_future(work)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for detached work still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def delete_conversation(self, conversation_id: str) -> bool:
        await self.store.require_conversation(conversation_id)
        return await self.persistence.forget(conversation_id)

    async def reset_all(self) -> None:
        await self.persistence.reset_all()
