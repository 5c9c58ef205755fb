"""
Runs a shifter and a metrics watchdog under one cancellation scope.
"""

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from .errors import InvariantViolation

logger = logging.getLogger(__name__)


class RolloutState(enum.Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class RolloutSupervisor:
    """
    Starts the shift and the watchdog together and cancels the sibling as
    soon as either one returns, whether it succeeded or failed.

    The first exception raised by either participant is re-raised after
    both tasks are joined. Applied weights are never rolled back.
    """

    def __init__(self, shift: Callable[[], Awaitable[None]], watch: Callable[[], Awaitable[None]]):
        self.shift = shift
        self.watch = watch
        self.state = RolloutState.PENDING
        self.error: Optional[BaseException] = None

    async def run(self):
        self.state = RolloutState.RUNNING
        shifter = asyncio.create_task(self.shift(), name='shifter')
        watchdog = asyncio.create_task(self.watch(), name='watchdog')
        tasks = [shifter, watchdog]

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self.state = RolloutState.FAILED
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        # tasks in "done" finished before the scope was closed; report their
        # errors in start order so a shift failure wins over a simultaneous abort
        for task in tasks:
            if task not in done:
                continue
            if task.cancelled():
                self.error = asyncio.CancelledError(f"{task.get_name()} was cancelled")
                break
            if task.exception() is not None:
                self.error = task.exception()
                break

        if self.error is not None:
            self.state = RolloutState.FAILED
            logger.error(f"Rollout failed: {self.error}")
            raise self.error

        if shifter not in done:
            # the watchdog returned on its own before the shift finished
            self.state = RolloutState.FAILED
            self.error = InvariantViolation('metrics watchdog stopped before the traffic shift completed')
            raise self.error

        self.state = RolloutState.SUCCEEDED
        logger.info('Rollout succeeded')
