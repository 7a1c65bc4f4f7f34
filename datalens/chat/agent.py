from __future__ import annotations
from typing import Optional, Sequence, Tuple

from ..ai_engine.llm_client import LLMClient, generate_text
from ..ai_engine.prompt_templates import CHAT_CONTEXT, CHAT_PROMPT, CHAT_ERROR_MESSAGE
from ..core.errors import ChatRejected, LLMError
from ..core.state import OperationState, StateCoordinator
from ..core.types import ChatMessage, Role
from ..utils.logger import get_logger
from ..utils.settings import Settings

log = get_logger("chat_engine")

# === PROMPT ===
def build_chat_prompt(record_count: int, columns: Sequence[str], question: str) -> str:
    """
    Dataset metadata plus the new question only.
    Earlier turns stay in the transcript but are not sent to the model.
    """
    context = CHAT_CONTEXT.format(records=record_count, columns=", ".join(columns))
    return CHAT_PROMPT.format(context=context, question=question)

# === ORCHESTRATOR ===
class ChatOrchestrator:
    def __init__(self, client: LLMClient, coordinator: StateCoordinator, settings: Settings):
        self.client = client
        self.coordinator = coordinator
        self.settings = settings

    async def submit(self, utterance: str) -> Optional[Tuple[ChatMessage, ChatMessage]]:
        """
        Append the user message, ask the model, append the reply (or the fallback).

        Returns the (user, assistant) pair, or None for a blank utterance.

        Raises:
            ChatRejected: no dataset loaded, or another operation holds the busy indicator
        """
        if not utterance or not utterance.strip():
            return None
        state = self.coordinator.state
        if state.dataset is None:
            raise ChatRejected("Upload a dataset before asking questions")
        if self.coordinator.is_busy:
            raise ChatRejected(f"Busy: {self.coordinator.operation_state.value}")

        dataset = state.dataset
        epoch = self.coordinator.conversation_epoch
        with self.coordinator.operation(OperationState.AWAITING_CHAT_RESPONSE):
            user_msg = ChatMessage(Role.USER, utterance)
            self.coordinator.append_message(user_msg, epoch=epoch)

            prompt = build_chat_prompt(dataset.record_count, dataset.columns, utterance)
            try:
                reply = await generate_text(
                    self.client,
                    prompt,
                    timeout=self.settings.llm_timeout,
                    retries=self.settings.llm_retries,
                )
            except LLMError as e:
                log.opt(exception=e).error(f"Error in chat ({e.kind.value}): {e}")
                reply = CHAT_ERROR_MESSAGE

            assistant_msg = ChatMessage(Role.ASSISTANT, reply)
            self.coordinator.append_message(assistant_msg, epoch=epoch)
        return user_msg, assistant_msg
