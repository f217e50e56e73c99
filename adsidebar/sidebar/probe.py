"""CrossBoundaryProbe: learns the render state of isolated frame contexts.

One round broadcasts a probe request to every target and arms a single
timeout for the whole round. Replies are recorded as they arrive; the
round closes when every target answered or the timeout fires, with
whatever subset answered. A silent target is pending, never a failure.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from adsidebar.dom.frame import FrameContext
from adsidebar.runtime.timer import Timer, TimerHandle
from adsidebar.sidebar.messages import ProbeRequest, ProbeResponse

logger = structlog.get_logger()

ReplyHandler = Callable[[ProbeResponse], None]


class ProbeTransport(Protocol):
    def send(self, target: FrameContext, request: ProbeRequest, reply: ReplyHandler) -> None:
        """Deliver request; reply is invoked with the eventual response, or never."""
        ...


class FrameTransport:
    """ProbeTransport over FrameContext.post_message with wire validation."""

    def send(self, target: FrameContext, request: ProbeRequest, reply: ReplyHandler) -> None:
        def _on_reply(data: dict[str, Any]) -> None:
            try:
                response = ProbeResponse.model_validate(data)
            except ValidationError:
                logger.warning("probe_reply_malformed", context_id=target.context_id)
                return
            reply(response)

        target.post_message(request.model_dump(), _on_reply)


class FrameResponder:
    """The frame side of the probe: answers each request from its own state."""

    def __init__(self, context: FrameContext) -> None:
        self._context = context

    @classmethod
    def install(cls, context: FrameContext) -> FrameResponder:
        responder = cls(context)
        context.add_message_handler(responder.handle)
        return responder

    def handle(self, data: dict[str, Any], reply: Callable[[dict[str, Any]], None]) -> None:
        if data.get("kind") != "probe-request":
            return
        ctx = self._context
        response = ProbeResponse(
            ready_state=ctx.ready_state,
            width=ctx.body_width,
            height=ctx.body_height,
        )
        reply(response.model_dump(by_alias=True))


@dataclass(frozen=True)
class ProbeEntry:
    ready_state: str
    width: float | None
    height: float | None


@dataclass
class ProbeRound:
    round_id: int
    expected: dict[str, FrameContext]
    replies: dict[str, ProbeEntry] = field(default_factory=dict)
    timed_out: bool = False

    @property
    def pending(self) -> set[str]:
        return set(self.expected) - set(self.replies)


class CrossBoundaryProbe:
    def __init__(
        self, transport: ProbeTransport, timer: Timer, *, timeout_units: float = 300
    ) -> None:
        self._transport = transport
        self._timer = timer
        self._timeout_units = timeout_units
        self._round_ids = itertools.count(1)
        self._round: ProbeRound | None = None
        self._on_close: Callable[[ProbeRound], None] | None = None
        self._handle: TimerHandle | None = None
        # ProbeRecord: latest reply per context, overwritten on every round.
        self.record: dict[str, ProbeEntry] = {}

    @property
    def in_flight(self) -> bool:
        return self._round is not None

    def run_round(
        self, targets: Iterable[FrameContext], on_close: Callable[[ProbeRound], None]
    ) -> None:
        self.cancel()
        rnd = ProbeRound(
            round_id=next(self._round_ids),
            expected={t.context_id: t for t in targets},
        )
        if not rnd.expected:
            on_close(rnd)
            return

        self._round = rnd
        self._on_close = on_close
        self._handle = self._timer.call_later(
            self._timeout_units, partial(self._timeout, rnd.round_id)
        )
        logger.debug("probe_round_started", round_id=rnd.round_id, targets=len(rnd.expected))

        request = ProbeRequest()
        for context_id, target in list(rnd.expected.items()):
            self._transport.send(target, request, partial(self._on_reply, rnd.round_id, context_id))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._round = None
        self._on_close = None

    def forget(self) -> None:
        self.cancel()
        self.record.clear()

    def _on_reply(self, round_id: int, context_id: str, response: ProbeResponse) -> None:
        rnd = self._round
        # Late replies from a closed round and second replies are ignored.
        if rnd is None or rnd.round_id != round_id or context_id in rnd.replies:
            return
        entry = ProbeEntry(
            ready_state=response.ready_state,
            width=response.width,
            height=response.height,
        )
        rnd.replies[context_id] = entry
        self.record[context_id] = entry
        if len(rnd.replies) == len(rnd.expected):
            self._close(timed_out=False)

    def _timeout(self, round_id: int) -> None:
        if self._round is None or self._round.round_id != round_id:
            return
        self._handle = None
        self._close(timed_out=True)

    def _close(self, *, timed_out: bool) -> None:
        rnd, on_close = self._round, self._on_close
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._round = None
        self._on_close = None
        if rnd is None or on_close is None:
            return
        rnd.timed_out = timed_out
        logger.debug(
            "probe_round_closed",
            round_id=rnd.round_id,
            answered=len(rnd.replies),
            pending=len(rnd.pending),
            timed_out=timed_out,
        )
        on_close(rnd)
