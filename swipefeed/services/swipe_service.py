"""Swipe submission over an injected push channel."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from swipefeed.core.errors import SwipeErrorKind, SwipeSubmissionError
from swipefeed.schemas.matching import MatchOutcome
from swipefeed.schemas.swipe import SwipeDirection

logger = structlog.get_logger()

SWIPE_EVENT = "swipe"
SWIPE_RESULT_EVENT = "swipeResult"


class PushChannel(Protocol):
    connected: bool

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def on(self, event: str, callback: Callable[[dict], None]) -> None: ...

    def off(self, event: str, callback: Callable[[dict], None]) -> None: ...

    def emit(self, event: str, payload: dict) -> None: ...


def parse_outcome(response: dict) -> MatchOutcome:
    outcome = MatchOutcome.model_validate(response)
    match = response.get("match")
    if outcome.score is None and isinstance(match, dict):
        score = match.get("matchScore", match.get("score"))
        if score is not None:
            outcome.score = float(score)
    if outcome.conversation is None and isinstance(match, dict) and isinstance(match.get("conversation"), dict):
        outcome.conversation = match["conversation"]
    return outcome


class SwipeService:
    def __init__(self, channel: PushChannel):
        self._channel = channel

    @property
    def connected(self) -> bool:
        return self._channel.connected

    async def submit(self, candidate_id: str, direction: SwipeDirection) -> MatchOutcome:
        if not self._channel.connected:
            raise SwipeSubmissionError(SwipeErrorKind.DISCONNECTED, "Push channel not connected")

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on_result(response: dict) -> None:
            if not isinstance(response, dict) or future.done():
                return
            target = response.get("targetUserId")
            if target is not None and target != candidate_id:
                return
            future.set_result(response)

        self._channel.on(SWIPE_RESULT_EVENT, _on_result)
        try:
            logger.debug("swipe_emitted", candidate_id=candidate_id, direction=direction.value)
            self._channel.emit(SWIPE_EVENT, {"targetUserId": candidate_id, "direction": direction.wire})
            response = await future
        finally:
            self._channel.off(SWIPE_RESULT_EVENT, _on_result)

        if not response.get("success"):
            raise SwipeSubmissionError(SwipeErrorKind.REJECTED, response.get("error") or "Swipe failed")
        return parse_outcome(response)


Responder = Callable[[dict], Awaitable[dict] | dict]


class InMemoryPushChannel:
    """Loopback channel: every emitted swipe is answered by ``responder``."""

    def __init__(self, responder: Responder | None = None, connected: bool = False):
        self.connected = connected
        self.responder = responder
        self.sent: list[tuple[str, dict]] = []
        self._listeners: dict[str, list[Callable[[dict], None]]] = {}
        self._tasks: set[asyncio.Task] = set()

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False
        for task in list(self._tasks):
            task.cancel()

    def on(self, event: str, callback: Callable[[dict], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[[dict], None]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def dispatch(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(payload)

    def emit(self, event: str, payload: dict) -> None:
        self.sent.append((event, payload))
        if event != SWIPE_EVENT or self.responder is None:
            return
        task = asyncio.get_running_loop().create_task(self._respond(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _respond(self, payload: dict) -> None:
        result = self.responder(payload)
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            result = await result
        self.dispatch(SWIPE_RESULT_EVENT, {"targetUserId": payload["targetUserId"], **result})
