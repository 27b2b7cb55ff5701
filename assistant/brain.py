"""Brain: the core reasoning engine.

Runs the bounded multi-turn LLM loop with tool calling:

    build context → call model → tool calls? → execute → call model → ... → answer

A turn ends when the model answers without requesting tools, or when the
iteration cap is reached (the answer is then empty). Only the user message
and the final answer are persisted; tool traffic stays in memory.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from shared.log import get_logger, session_context

from assistant.config import DEFAULT_SYSTEM_PROMPT
from assistant.llm.base import LLMProvider, LLMResponse, Message, ToolCall
from assistant.memory import SessionStore
from assistant.tools import ToolRegistry

logger = get_logger("brain")

DEFAULT_MAX_ITERATIONS = 4


@dataclass
class AgentEvent:
    """Presentation-only notification emitted during a turn.

    Types: ``status``, ``tool_call``, ``tool_result``, ``tool_error``.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[AgentEvent], None]
DeltaHandler = Callable[[str], None]


class Brain:
    """LLM-powered reasoning engine for the assistant."""

    def __init__(
        self,
        llm: LLMProvider,
        tools: ToolRegistry,
        sessions: SessionStore,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = 50,
        model: str | None = None,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._sessions = sessions
        self._max_iterations = max_iterations
        self._system_prompt = system_prompt
        self._history_limit = history_limit
        self._model = model

    async def run_once(
        self,
        session_key: str,
        user_message: str,
        on_event: EventHandler | None = None,
    ) -> str:
        """Process one user message with batch completions; return the answer."""
        return await self._run_turn(session_key, user_message, None, on_event)

    async def run_once_stream(
        self,
        session_key: str,
        user_message: str,
        on_delta: DeltaHandler,
        on_event: EventHandler | None = None,
    ) -> str:
        """Process one user message, forwarding answer text to ``on_delta`` as it streams."""
        return await self._run_turn(session_key, user_message, on_delta, on_event)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def _run_turn(
        self,
        session_key: str,
        user_message: str,
        on_delta: DeltaHandler | None,
        on_event: EventHandler | None,
    ) -> str:
        session = self._sessions.get_or_create(session_key)
        history_msgs = self._history_to_messages(session.history)
        if self._history_limit > 0:
            history_msgs = history_msgs[-self._history_limit:]

        messages = [Message(role="system", content=self._system_prompt)]
        messages += history_msgs
        messages.append(Message(role="user", content=user_message))

        with session_context(session_key):
            logger.info(
                "processing_message",
                msg_len=len(user_message),
                history_len=len(history_msgs),
                streaming=on_delta is not None,
            )

            final_text = await self._reasoning_loop(messages, on_delta, on_event)

            session.add_message("user", user_message)
            session.add_message("assistant", final_text)
            await self._sessions.save(session)

            logger.info("turn_complete", answer_len=len(final_text))
        return final_text

    # ------------------------------------------------------------------
    # Reasoning loop
    # ------------------------------------------------------------------

    async def _reasoning_loop(
        self,
        messages: list[Message],
        on_delta: DeltaHandler | None,
        on_event: EventHandler | None,
    ) -> str:
        """Call the model until it answers without tools or the cap is hit."""
        tool_defs = self._tools.definitions()

        for iteration in range(1, self._max_iterations + 1):
            _emit(on_event, AgentEvent("status", {"message": "thinking", "iteration": iteration}))

            if on_delta is None:
                response = await self._llm.chat(messages, tool_defs, self._model)
            else:
                response = await self._drain_stream(messages, tool_defs, on_delta)

            if not response.has_tool_calls:
                return response.content or ""

            messages.append(Message(
                role="assistant",
                content=response.content,
                tool_calls=response.tool_calls,
            ))

            for tc in response.tool_calls:
                result = await self._execute_tool(tc, iteration, on_event)
                messages.append(Message(
                    role="tool",
                    content=result,
                    tool_call_id=tc.id,
                    name=tc.name,
                ))

        logger.warning("max_iterations_reached", max_iterations=self._max_iterations)
        return ""

    async def _drain_stream(
        self,
        messages: list[Message],
        tool_defs: list[dict[str, Any]],
        on_delta: DeltaHandler,
    ) -> LLMResponse:
        """Consume one streamed completion into a single response."""
        parts: list[str] = []
        tool_calls: list[ToolCall] = []
        finish_reason = "stop"
        usage = None

        async for chunk in self._llm.stream(messages, tool_defs, self._model):
            if chunk.content:
                parts.append(chunk.content)
                on_delta(chunk.content)
            if chunk.tool_calls:
                tool_calls = chunk.tool_calls
            if chunk.finish_reason != "streaming":
                finish_reason = chunk.finish_reason
            usage = chunk.usage or usage

        return LLMResponse(
            content="".join(parts) or None,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=usage,
        )

    async def _execute_tool(
        self,
        tc: ToolCall,
        iteration: int,
        on_event: EventHandler | None,
    ) -> str:
        """Run one tool call. A failure is reported and then ends the turn."""
        logger.info("tool_call", round=iteration, tool=tc.name, args=tc.arguments)
        _emit(on_event, AgentEvent("tool_call", {"id": tc.id, "name": tc.name, "arguments": tc.arguments}))
        try:
            result = await self._tools.execute(tc.name, tc.arguments)
        except Exception as exc:
            logger.warning("tool_execution_error", tool=tc.name, error=str(exc))
            _emit(on_event, AgentEvent("tool_error", {"id": tc.id, "name": tc.name, "error": str(exc)}))
            raise
        _emit(on_event, AgentEvent("tool_result", {"id": tc.id, "name": tc.name, "result": result}))
        return result

    # ------------------------------------------------------------------
    # History conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _history_to_messages(raw: list[dict[str, Any]]) -> list[Message]:
        """Stored user/assistant text entries as prompt messages; empty ones are dropped."""
        messages: list[Message] = []
        for entry in raw:
            role = entry.get("role", "user")
            content = entry.get("content")
            if role in ("user", "assistant") and content:
                messages.append(Message(role=role, content=content))
        return messages


def _emit(handler: EventHandler | None, event: AgentEvent) -> None:
    """Deliver an event; a failing handler is logged and never ends the turn."""
    if handler is None:
        return
    try:
        handler(event)
    except Exception:
        logger.exception("event_handler_failed", event_type=event.type)
