from typing import AsyncIterator, Dict, List, Optional, Protocol, Union
import logging

from openai import AsyncOpenAI, BadRequestError

from core.config import settings

logger = logging.getLogger(__name__)

Contents = Union[str, List[Dict[str, str]]]


class ChatModel(Protocol):
    async def generate(self, contents: Contents, system_instruction: Optional[str] = None) -> str: ...

    def stream_generate(
        self, contents: Contents, system_instruction: Optional[str] = None
    ) -> AsyncIterator[str]: ...


def build_messages(contents: Contents, system_instruction: Optional[str] = None) -> List[Dict[str, str]]:
    """Normalise a bare prompt or a message list into chat-completions messages."""
    messages: List[Dict[str, str]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction.strip()})

    if isinstance(contents, str):
        messages.append({"role": "user", "content": contents})
        return messages

    for msg in contents:
        role = msg.get("role")
        content = (msg.get("content") or "").strip()
        if not role or not content:
            continue
        messages.append({"role": role, "content": content})
    return messages


class OpenAIChatModel:
    """Chat-completions adapter exposing the generate / stream_generate contract."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.client = client
        self.model = model
        self.temperature = settings.LLM_TEMPERATURE_DEFAULT if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS

    def _params(self, contents: Contents, system_instruction: Optional[str], stream: bool) -> dict:
        params = {
            "model": self.model,
            "messages": build_messages(contents, system_instruction),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if stream:
            params["stream"] = True
        return params

    async def _create(self, params: dict):
        try:
            return await self.client.chat.completions.create(**params)
        except BadRequestError as e:
            # Some models only accept the default temperature; retry without it
            msg = str(e)
            if "temperature" in msg and "unsupported" in msg.lower():
                logger.warning(f"[LLM] {self.model} rejected temperature, retrying without it")
                params.pop("temperature", None)
                return await self.client.chat.completions.create(**params)
            raise

    async def generate(self, contents: Contents, system_instruction: Optional[str] = None) -> str:
        response = await self._create(self._params(contents, system_instruction, stream=False))
        return response.choices[0].message.content or ""

    async def stream_generate(
        self, contents: Contents, system_instruction: Optional[str] = None
    ) -> AsyncIterator[str]:
        stream = await self._create(self._params(contents, system_instruction, stream=True))
        try:
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        finally:
            await stream.close()
