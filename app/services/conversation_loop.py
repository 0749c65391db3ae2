"""
Turn-based fallback conversation.

Calls that are not bridged to the realtime engine are served one utterance at
a time: the provider transcribes the caller, the loop produces the reply text,
and the webhook renders it for speech synthesis. Histories live in memory,
keyed by call identifier, and are evicted when the call ends.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.bot.tools import ToolContext, ToolRegistry
from app.config.constants import (
    APOLOGY_MESSAGES,
    DEFAULT_LANGUAGE,
    GOODBYE_MESSAGES,
    GREETING_MESSAGES,
    LOGGER_NAME,
    REPROMPT_MESSAGES,
    localized,
)
from app.models.openai_schemas import ConversationTurn, MessageRole
from app.services.completion import CompletionProvider

logger = logging.getLogger(LOGGER_NAME)

CLOSING_PHRASES = (
    # English
    "goodbye", "good bye", "bye", "bye bye", "that's all", "that is all",
    "nothing else", "no thanks", "hang up",
    # German
    "auf wiedersehen", "auf wiederhören", "auf wiederhoeren", "tschüss", "tschüs",
    "ciao", "das war's", "das wars", "das war alles", "nein danke", "auflegen",
    # French, Spanish, Italian
    "au revoir", "adiós", "adios", "arrivederci",
)

SYSTEM_PROMPTS = {
    "de": (
        "Du bist ein freundlicher Telefonassistent. Antworte in ein bis zwei kurzen Sätzen, "
        "ohne Aufzählungen oder Formatierung, da deine Antwort vorgelesen wird. Antworte auf Deutsch."
    ),
    "en": (
        "You are a friendly phone assistant. Answer in one or two short sentences without "
        "lists or formatting, since your answer will be read aloud. Answer in English."
    ),
}


@dataclass
class TurnResult:
    """Reply for one turn, and whether the call should hang up after speaking it."""

    text: str
    end_call: bool = False


class FallbackConversationLoop:
    """
    Produces replies for turn-based calls.

    Each turn is handled in this order: an empty utterance gets a re-prompt, a
    closing phrase gets a goodbye and ends the call, an utterance matching a
    tool trigger runs that tool, and anything else goes to the completion
    provider. Errors are answered with an apology and the call continues.
    Every turn, silent or not, counts toward ``max_turns``.
    """

    def __init__(
        self,
        completion: CompletionProvider,
        tools: ToolRegistry,
        language: str = DEFAULT_LANGUAGE,
        max_turns: int = 10,
        system_prompt: Optional[str] = None,
    ):
        self.completion = completion
        self.tools = tools
        self.language = language
        self.max_turns = max_turns
        self.system_prompt = system_prompt or localized(SYSTEM_PROMPTS, language)
        self._histories: Dict[str, List[ConversationTurn]] = {}
        # Webhook round-trips per call, silent ones included
        self._turns: Dict[str, int] = {}

    def history(self, call_id: str) -> List[ConversationTurn]:
        return list(self._histories.get(call_id, []))

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._histories

    def __len__(self) -> int:
        return len(self._histories)

    def _ensure_history(self, call_id: str) -> List[ConversationTurn]:
        history = self._histories.get(call_id)
        if history is None:
            history = [ConversationTurn(role=MessageRole.SYSTEM, content=self.system_prompt)]
            self._histories[call_id] = history
        return history

    def start(self, call_id: str) -> str:
        """Open a conversation and return the greeting to speak."""
        greeting = localized(GREETING_MESSAGES, self.language)
        self._ensure_history(call_id).append(ConversationTurn(role=MessageRole.ASSISTANT, content=greeting))
        logger.info(f"Fallback conversation started for call {call_id}")
        return greeting

    def end(self, call_id: str) -> None:
        """Evict a call's history. Unknown calls are ignored."""
        self._turns.pop(call_id, None)
        if self._histories.pop(call_id, None) is not None:
            logger.info(f"Fallback conversation ended for call {call_id}")

    @staticmethod
    def is_closing_phrase(utterance: str) -> bool:
        normalized = re.sub(r"[^\w\s']", " ", utterance.lower().replace("’", "'"))
        normalized = " ".join(normalized.split())
        return any(re.search(rf"\b{re.escape(phrase)}\b", normalized) for phrase in CLOSING_PHRASES)

    async def handle_turn(self, call_id: str, utterance: Optional[str]) -> TurnResult:
        """
        Produce the reply to one caller utterance.

        Args:
            call_id: Call identifier the history is keyed by
            utterance: Transcribed caller speech; may be empty

        Returns:
            The reply and whether the call should end after it
        """
        history = self._ensure_history(call_id)
        turn = self._turns.get(call_id, 0) + 1
        self._turns[call_id] = turn
        text = (utterance or "").strip()
        if not text:
            if turn >= self.max_turns:
                logger.info(f"Call {call_id} stayed silent until the {self.max_turns} turn limit, ending")
                self.end(call_id)
                return TurnResult(localized(GOODBYE_MESSAGES, self.language), end_call=True)
            logger.info(f"Empty utterance on call {call_id}, re-prompting")
            return TurnResult(localized(REPROMPT_MESSAGES, self.language))

        history.append(ConversationTurn(role=MessageRole.USER, content=text))
        if self.is_closing_phrase(text):
            logger.info(f"Closing phrase on call {call_id}")
            self.end(call_id)
            return TurnResult(localized(GOODBYE_MESSAGES, self.language), end_call=True)

        try:
            reply = await self._respond(call_id, text, history)
        except Exception as e:
            logger.error(f"Failed to produce reply for call {call_id}: {type(e).__name__}: {e}", exc_info=True)
            reply = localized(APOLOGY_MESSAGES, self.language)
        history.append(ConversationTurn(role=MessageRole.ASSISTANT, content=reply))

        if turn >= self.max_turns:
            logger.info(f"Call {call_id} reached {self.max_turns} turns, ending")
            self.end(call_id)
            return TurnResult(f"{reply} {localized(GOODBYE_MESSAGES, self.language)}", end_call=True)
        return TurnResult(reply)

    async def _respond(self, call_id: str, text: str, history: List[ConversationTurn]) -> str:
        for tool in self.tools:
            if tool.trigger is None:
                continue
            arguments = tool.trigger(text)
            if arguments is not None:
                logger.info(f"Utterance on call {call_id} triggered tool {tool.name}")
                return await tool.executor(arguments, ToolContext(call_id=call_id, language=self.language))

        reply = await self.completion.complete(history)
        return reply or localized(REPROMPT_MESSAGES, self.language)
