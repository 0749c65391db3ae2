"""Chat completions for the turn-based fallback path."""

import logging
from typing import List, Optional, Protocol

from openai import AsyncOpenAI

from app.config.constants import DEFAULT_COMPLETION_MODEL, LOGGER_NAME
from app.models.openai_schemas import ConversationTurn

logger = logging.getLogger(LOGGER_NAME)


class CompletionProvider(Protocol):
    """Anything that can turn a conversation history into the next assistant reply."""

    async def complete(self, history: List[ConversationTurn]) -> str: ...


class OpenAICompletionProvider:
    """Generates fallback replies with the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_COMPLETION_MODEL,
        max_tokens: int = 200,
        temperature: float = 0.7,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so the service starts without an API key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def complete(self, history: List[ConversationTurn]) -> str:
        """
        Produce the assistant's next reply.

        Args:
            history: The call's conversation so far, system prompt first

        Returns:
            The reply text, stripped; may be empty
        """
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": turn.role.value, "content": turn.content} for turn in history],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        content = response.choices[0].message.content or ""
        logger.debug(f"Completion ({self.model}) returned {len(content)} chars")
        return content.strip()
