"""Agent orchestrator: drives one tool-calling summarization run.

The run is an explicit state machine::

    PROMPTING → AWAITING_MODEL → (EXECUTING_TOOL → AWAITING_MODEL)* → DONE
                      └──────────────── any failure ───────────────→ FAILED

Tool calls requested in one turn execute sequentially in request order and
every result is fed back before the next model turn.  Text fragments from
all turns are concatenated in the order the model emitted them.

Cancellation is ordinary ``asyncio`` task cancellation: ``CancelledError``
surfaces from whichever external call is awaiting, the state becomes
FAILED and the error propagates unchanged.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time

from ..exceptions import AgentExecutionError
from ..llm.providers import ChatMessage, TextBackend, ToolDeclaration
from .base import AgentRunResult, AgentState, ToolCall, ToolCallStatus
from .tools.gateway import ToolGateway

logger = logging.getLogger("activity.agent.loop")

DEFAULT_MAX_TURNS = 25


class AgentOrchestrator:
    """Runs the model ↔ tool loop until the model stops requesting tools."""

    def __init__(
        self,
        backend: TextBackend,
        gateway: ToolGateway,
        *,
        system_prompt: str,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self.backend = backend
        self.gateway = gateway
        self.system_prompt = system_prompt
        self.max_turns = max_turns
        self._state = AgentState.PROMPTING

    @property
    def state(self) -> AgentState:
        return self._state

    def _transition(self, new: AgentState) -> None:
        logger.debug("state %s → %s", self._state.value, new.value)
        self._state = new

    async def run(self, user_prompt: str) -> AgentRunResult:
        """Run to completion and return the concatenated summary.

        Raises
        ------
        AgentExecutionError
            The backend failed or the turn limit was reached.
        asyncio.CancelledError
            The surrounding task was cancelled.
        """
        t0 = time.perf_counter()
        self._state = AgentState.PROMPTING
        declarations = [
            ToolDeclaration(name=c.name, description=c.description, parameters=c.to_schema())
            for c in self.gateway.contracts
        ]
        messages: list[ChatMessage] = [ChatMessage(role="user", content=user_prompt)]
        fragments: list[str] = []
        calls: list[ToolCall] = []
        turns = 0

        try:
            while True:
                if turns >= self.max_turns:
                    self._transition(AgentState.FAILED)
                    raise AgentExecutionError(
                        f"agent did not finish within {self.max_turns} model turns"
                    )

                self._transition(AgentState.AWAITING_MODEL)
                try:
                    turn = await self.backend.complete_with_tools(
                        self.system_prompt, messages, declarations,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._transition(AgentState.FAILED)
                    raise AgentExecutionError(f"model request failed: {exc}") from exc
                turns += 1
                fragments.extend(turn.text)

                if not turn.tool_requests:
                    self._transition(AgentState.DONE)
                    break

                messages.append(ChatMessage(
                    role="assistant",
                    content=turn.joined_text,
                    tool_requests=turn.tool_requests,
                ))

                self._transition(AgentState.EXECUTING_TOOL)
                for req in turn.tool_requests:
                    call = ToolCall(id=req.id, tool_name=req.name)
                    await self.gateway.dispatch(call, req.arguments)
                    calls.append(call)
                    if call.status != ToolCallStatus.SUCCESS:
                        logger.info("Tool %s → %s: %s", req.name, call.status.value, call.error)
                    messages.append(ChatMessage(
                        role="tool",
                        tool_call_id=req.id,
                        name=req.name,
                        content=json.dumps(call.result, default=str),
                    ))
        except asyncio.CancelledError:
            self._transition(AgentState.FAILED)
            logger.info("Agent run cancelled after %d turns", turns)
            raise

        budget = self.gateway.budget.snapshot()
        logger.info(
            "Agent finished: %d turns, %d tool calls, %d diff fetches (%.1fs)",
            turns, len(calls), budget.fetch_count, time.perf_counter() - t0,
        )
        return AgentRunResult(
            summary="".join(fragments).strip(),
            state=self._state,
            turns=turns,
            tool_calls=calls,
            budget=budget,
        )
