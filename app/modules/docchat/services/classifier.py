"""Follow-up detection and rewriting of user prompts into standalone questions.

The model is asked for a single JSON object, but its output is treated as an
untrusted payload: it may be wrapped in a code fence or double-encoded as a
JSON string. Anything that cannot be decoded falls back to treating the
prompt as standalone so that classification never blocks answering.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional
import json
import logging
import re

from app.modules.docchat.services.errors import (
    InvalidClassification,
    MalformedClassifierOutput,
    UpstreamUnavailable,
)
from app.modules.docchat.services.llm import ChatModel
from app.modules.docchat.services.prompts import CLASSIFIER_SYSTEM, build_classifier_prompt
from app.modules.docchat.services.upstream import bounded
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)

STANDALONE = "standalone"
FOLLOW_UP = "follow-up"

Kind = Literal["standalone", "follow-up"]

_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.S)


@dataclass(frozen=True)
class ClassificationResult:
    kind: Kind
    resolved_question: str

    @property
    def is_follow_up(self) -> bool:
        return self.kind == FOLLOW_UP


def _strip_fence(text: str) -> str:
    text = text.strip()
    m = _FENCE.match(text)
    return m.group(1).strip() if m else text


def decode_classifier_output(raw: Optional[str]) -> Dict[str, Any]:
    """Decode model output into a dict, tolerating fences and one level of string encoding."""
    if raw is None or not raw.strip():
        raise MalformedClassifierOutput("empty classifier output")
    try:
        value = json.loads(_strip_fence(raw))
        if isinstance(value, str):
            value = json.loads(_strip_fence(value))
    except json.JSONDecodeError as e:
        raise MalformedClassifierOutput(f"undecodable classifier output: {e}") from e
    if not isinstance(value, dict):
        raise MalformedClassifierOutput(f"expected a JSON object, got {type(value).__name__}")
    return value


def interpret(data: Dict[str, Any], prompt: str) -> ClassificationResult:
    """Validate a decoded payload against the prompt it classifies."""
    kind = data.get("type")
    if not isinstance(kind, str):
        raise MalformedClassifierOutput("classifier output has no type")
    kind = kind.strip().lower()

    if kind == STANDALONE:
        return ClassificationResult(STANDALONE, prompt)
    if kind == FOLLOW_UP:
        question = data.get("question")
        question = question.strip() if isinstance(question, str) else ""
        return ClassificationResult(FOLLOW_UP, question or prompt)
    raise InvalidClassification(f"Invalid classification type: {kind!r}")


def fallback(prompt: str) -> ClassificationResult:
    return ClassificationResult(STANDALONE, prompt)


class Classifier:
    def __init__(self, llm: ChatModel, timeout: float = 10.0):
        self.llm = llm
        self.timeout = timeout

    @profile_stage("classify")
    async def classify(
        self, conversation_id: str, prompt: str, history: List[Dict[str, str]]
    ) -> ClassificationResult:
        if not history:
            # Nothing to follow up on
            return fallback(prompt)

        try:
            raw = await bounded(
                self.llm.generate(build_classifier_prompt(history, prompt), system_instruction=CLASSIFIER_SYSTEM),
                timeout=self.timeout,
                operation="classify",
            )
        except UpstreamUnavailable as e:
            logger.warning(f"[classifier] {conversation_id}: provider unavailable, treating as standalone: {e}")
            return fallback(prompt)

        try:
            result = interpret(decode_classifier_output(raw), prompt)
        except MalformedClassifierOutput as e:
            logger.warning(f"[classifier] {conversation_id}: {e}; treating as standalone")
            return fallback(prompt)

        logger.info(f"[classifier] {conversation_id}: kind={result.kind} resolved_len={len(result.resolved_question)}")
        return result
