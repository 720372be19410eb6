"""Two-phase shutdown: ask the child to quit, kill it if it does not.

Some programs (ffmpeg among them) accept a quit instruction on stdin and
finish their output cleanly. The orchestrator runs such a program on its
own process token, so the caller's token no longer kills it directly:

    IDLE
      -> WAIT_FOR_CANCEL_OR_EXIT    race caller token vs. "exited"
           -> EXITED                process finished first, nothing sent
           -> QUIT_SENT             caller cancelled, quit written once
                -> EXITED_GRACEFULLY    exited within the grace period
                -> ESCALATED            grace period elapsed, process token
                                        cancelled, supervisor kills the child

Escalation always surfaces as CommandCancelled from the supervisor.
"""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum

from ..config import get_config
from .cancellation import CancellationToken
from .command import Prepare, run as run_command
from .exit import CommandExit
from .monitor import CommandMonitor, MonitorInput, MonitorReceiver

__all__ = ["ShutdownState", "ShutdownOrchestrator"]

logger = logging.getLogger(__name__)


class ShutdownState(str, Enum):
    """Shutdown negotiation states."""

    IDLE = "idle"
    WAIT_FOR_CANCEL_OR_EXIT = "wait_for_cancel_or_exit"
    QUIT_SENT = "quit_sent"
    EXITED = "exited"
    EXITED_GRACEFULLY = "exited_gracefully"
    ESCALATED = "escalated"


_TRANSITIONS: dict[ShutdownState, frozenset[ShutdownState]] = {
    ShutdownState.IDLE: frozenset({ShutdownState.WAIT_FOR_CANCEL_OR_EXIT}),
    ShutdownState.WAIT_FOR_CANCEL_OR_EXIT: frozenset(
        {ShutdownState.EXITED, ShutdownState.QUIT_SENT}
    ),
    ShutdownState.QUIT_SENT: frozenset(
        {ShutdownState.EXITED_GRACEFULLY, ShutdownState.ESCALATED}
    ),
    ShutdownState.EXITED: frozenset(),
    ShutdownState.EXITED_GRACEFULLY: frozenset(),
    ShutdownState.ESCALATED: frozenset(),
}


class ShutdownOrchestrator:
    """Negotiates a graceful exit for one supervised process.

    An orchestrator drives a single shutdown sequence; create a new one per
    process.

    Attributes:
        grace_period: Seconds between the quit instruction and escalation
        quit_input: Text written to the child's stdin to request exit
    """

    def __init__(self, grace_period: float | None = None, quit_input: str = "q\n") -> None:
        self.grace_period = get_config().grace_period if grace_period is None else grace_period
        self.quit_input = quit_input
        self._state = ShutdownState.IDLE
        self._transitions: list[tuple[ShutdownState, ShutdownState]] = []
        self._quit_sent = False

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def transitions(self) -> list[tuple[ShutdownState, ShutdownState]]:
        """Every (from, to) transition taken so far."""
        return list(self._transitions)

    @property
    def quit_sent(self) -> bool:
        return self._quit_sent

    def _transition(self, target: ShutdownState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"illegal shutdown transition {self._state.value} -> {target.value}")
        logger.debug(f"Shutdown state {self._state.value} -> {target.value}")
        self._transitions.append((self._state, target))
        self._state = target

    async def watch(
        self,
        cancellation_token: CancellationToken,
        process_token: CancellationToken,
        exited: asyncio.Event,
        input: MonitorInput,
    ) -> ShutdownState:
        """Run the state machine to a terminal state.

        Args:
            cancellation_token: Caller's token; cancelling it starts the shutdown
            process_token: Token the supervisor runs on; cancelled on escalation
            exited: Set as soon as the supervisor produced its outcome
            input: Writer for the child's stdin

        Returns:
            The terminal state
        """
        self._transition(ShutdownState.WAIT_FOR_CANCEL_OR_EXIT)

        exit_waiter = asyncio.ensure_future(exited.wait())
        cancel_waiter = asyncio.ensure_future(cancellation_token.cancelled())
        try:
            await asyncio.wait({exit_waiter, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            exit_waiter.cancel()
            cancel_waiter.cancel()

        # an exit observed before the cancellation is not interrupted
        if exited.is_set():
            self._transition(ShutdownState.EXITED)
            return self._state

        self._transition(ShutdownState.QUIT_SENT)
        await self._send_quit(input)

        try:
            await asyncio.wait_for(exited.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                f"Process did not exit within {self.grace_period}s of quit request, killing it"
            )
            self._transition(ShutdownState.ESCALATED)
            process_token.cancel()
            return self._state

        logger.info("Process exited after quit request")
        self._transition(ShutdownState.EXITED_GRACEFULLY)
        return self._state

    async def _send_quit(self, input: MonitorInput) -> None:
        if self._quit_sent:
            return
        self._quit_sent = True
        logger.info(f"Cancellation requested, asking process to quit with {self.quit_input!r}")
        await input.send(self.quit_input)

    async def run(
        self,
        program: str | os.PathLike[str],
        *,
        cancellation_token: CancellationToken,
        prepare: Prepare | None = None,
        monitor: CommandMonitor | None = None,
    ) -> CommandExit:
        """Supervise a program with graceful shutdown on cancellation.

        Args:
            program: Resolved executable path
            cancellation_token: Caller's token
            prepare: CommandSpec preparation callback
            monitor: Monitor whose receiver the caller consumes; when omitted
                a private monitor is created and its lines are discarded

        Returns:
            The supervisor's CommandExit (natural or graceful exit)

        Raises:
            CommandCancelled: If the shutdown escalated to a kill
        """
        if self._state is not ShutdownState.IDLE:
            raise RuntimeError("shutdown orchestrator has already been used")

        owns_monitor = monitor is None
        if monitor is None:
            monitor = CommandMonitor()
        # independent of the caller's token: only escalation kills the child
        process_token = CancellationToken()
        exited = asyncio.Event()
        quit_input = monitor.receiver.input_handle()

        watcher = asyncio.create_task(
            self.watch(cancellation_token, process_token, exited, quit_input)
        )
        discard = asyncio.create_task(_discard(monitor.receiver)) if owns_monitor else None
        try:
            return await run_command(
                program,
                cancellation_token=process_token,
                prepare=prepare,
                sender=monitor.sender,
                pipe_stdin=True,
            )
        finally:
            exited.set()
            await watcher
            await quit_input.aclose()
            if owns_monitor:
                await monitor.sender.aclose()
                if discard is not None:
                    await discard
                await monitor.receiver.aclose()


async def _discard(receiver: MonitorReceiver) -> None:
    """Consume a private monitor so backpressure never stalls the child."""
    while await receiver.recv() is not None:
        pass
