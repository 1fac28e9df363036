"""USSD menu router.

States are registered with a ``run`` coroutine and a ``next`` map. On each
request the session's stored state is looked up, the caller's latest input
is matched against that state's ``next`` keys, and the matching target
state's ``run`` produces the prompt.

``next`` keys are matched in this order: exact strings, then patterns
prefixed with ``*`` (the remainder is a full-match regex), then the bare
``*`` wildcard.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from cryptodial.errors import CryptodialError, SessionExpiredError
from cryptodial.sessions import START_STATE, SessionStore
from cryptodial.storage.models import SessionRecord

logger = logging.getLogger("cryptodial.ussd")

SESSION_EXPIRED_TEXT = "Session expired. Please start again."
SYSTEM_ERROR_TEXT = "System error. Please try again."
INVALID_CHOICE_TEXT = "Invalid choice."


@dataclass
class Prompt:
    """What goes back to the handset.

    ``goto`` lands the session in a different state than the one that ran,
    e.g. to re-prompt after failed validation.
    """

    text: str
    end: bool = False
    goto: str | None = None

    def render(self) -> str:
        return f"{'END' if self.end else 'CON'} {self.text}"


def con(text: str, goto: str | None = None) -> Prompt:
    return Prompt(text=text, end=False, goto=goto)


def end(text: str) -> Prompt:
    return Prompt(text=text, end=True)


@dataclass
class MenuRequest:
    """One carrier callback (Africa's Talking field names)."""

    session_id: str
    phone_number: str
    text: str = ""
    service_code: str = ""

    @property
    def value(self) -> str:
        """The caller's latest input: the last ``*``-separated segment."""
        if not self.text:
            return ""
        return self.text.split("*")[-1].strip()


@dataclass
class StepContext:
    request: MenuRequest
    session: SessionRecord
    value: str

    @property
    def session_id(self) -> str:
        return self.request.session_id


Handler = Callable[[StepContext], Awaitable[Prompt]]


@dataclass
class MenuState:
    name: str
    run: Handler
    next: dict[str, str] = field(default_factory=dict)

    def resolve(self, value: str) -> str | None:
        if value in self.next:
            return self.next[value]
        for pattern, target in self.next.items():
            if pattern.startswith("*") and pattern != "*":
                if re.fullmatch(pattern[1:], value):
                    return target
        return self.next.get("*")


class UssdMenu:
    """Routes carrier callbacks through registered states."""

    def __init__(self, sessions: SessionStore) -> None:
        self.sessions = sessions
        self._states: dict[str, MenuState] = {}

    def state(self, name: str, run: Handler, next: dict[str, str] | None = None) -> None:
        self._states[name] = MenuState(name=name, run=run, next=dict(next or {}))

    def start_state(self, run: Handler, next: dict[str, str] | None = None) -> None:
        self.state(START_STATE, run, next)

    @property
    def states(self) -> dict[str, MenuState]:
        return dict(self._states)

    async def handle(self, request: MenuRequest) -> Prompt:
        """Run one step. Never raises; failures become an ``END`` prompt."""
        try:
            return await self._handle(request)
        except SessionExpiredError:
            return end(SESSION_EXPIRED_TEXT)
        except CryptodialError as exc:
            logger.error(f"Session {request.session_id} step failed: {exc}")
            await self._abandon(request.session_id)
            return end(SYSTEM_ERROR_TEXT)
        except Exception:
            logger.exception(f"Unhandled error in session {request.session_id}")
            await self._abandon(request.session_id)
            return end(SYSTEM_ERROR_TEXT)

    async def _handle(self, request: MenuRequest) -> Prompt:
        session = await self.sessions.get(request.session_id)
        if session is None or not request.text:
            session = await self.sessions.create(request.session_id, request.phone_number)
            ctx = StepContext(request=request, session=session, value="")
            return await self._run(self._states[START_STATE], ctx)

        value = request.value
        ctx = StepContext(request=request, session=session, value=value)
        current = self._states.get(session.state) or self._states[START_STATE]
        target = current.resolve(value)
        if target is None:
            # Only pure menus lack a wildcard, so re-running them is harmless.
            prompt = await self._run(current, ctx)
            if not prompt.end:
                prompt.text = f"{INVALID_CHOICE_TEXT}\n{prompt.text}"
            return prompt
        return await self._run(self._states[target], ctx)

    async def _run(self, state: MenuState, ctx: StepContext) -> Prompt:
        prompt = await state.run(ctx)
        if prompt.end:
            await self.sessions.clear_temp(ctx.session_id, state=START_STATE)
        else:
            await self.sessions.upsert(ctx.session_id, state=prompt.goto or state.name)
        return prompt

    async def _abandon(self, session_id: str) -> None:
        try:
            await self.sessions.clear_temp(session_id, state=START_STATE)
        except CryptodialError as exc:
            logger.warning(f"Could not reset session {session_id}: {exc}")
