"""
Notification dispatch for check-service-certs.
"""

import asyncio
from typing import Dict, List, Optional

from check_service_certs.logger import get_logger, log_notification_outcome
from check_service_certs.notifications import Alert, NotificationOutcome


class NotificationDispatcher:
    """
    Sends alerts as they arrive on an unbounded intake.

    Producers call submit() and finally close(); one consumer runs drain(),
    which starts one send task per alert and returns once the intake is
    closed and every send has finished. With a deadline, each send is given
    only the time left before it.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        """
        Args:
            deadline: Run deadline on the event loop's clock (loop.time())
        """
        self.logger = get_logger("dispatcher")
        self.deadline = deadline
        # None marks the end of the intake
        self._intake: "asyncio.Queue[Optional[Alert]]" = asyncio.Queue()
        self._tasks: Dict["asyncio.Task[None]", Alert] = {}
        self._outcomes: List[NotificationOutcome] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def outcomes(self) -> List[NotificationOutcome]:
        return list(self._outcomes)

    def submit(self, alert: Alert) -> None:
        """Queue an alert for delivery without waiting for it to be sent."""
        if self._closed:
            raise RuntimeError("Cannot submit alerts after the intake is closed")
        self._intake.put_nowait(alert)

    def close(self) -> None:
        """Signal that no more alerts will be submitted."""
        if not self._closed:
            self._closed = True
            self._intake.put_nowait(None)

    async def drain(self) -> List[NotificationOutcome]:
        """
        Consume the intake until it is closed and all sends have finished.

        Returns:
            Outcome of every delivery attempt
        """
        while True:
            item = await self._intake.get()
            if item is None:
                break
            task = asyncio.create_task(self._send(item))
            self._tasks[task] = item

        if self._tasks:
            await asyncio.gather(*self._tasks)

        self.logger.debug(f"All {len(self._tasks)} notifications attempted")
        return list(self._outcomes)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return self.deadline - asyncio.get_running_loop().time()

    async def _send(self, alert: Alert) -> None:
        sink_kind = alert.sink.kind
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            self._record(alert, error="deadline exceeded before sending")
            self.logger.warning(
                "Deadline exceeded before sending notification",
                extra={"service": alert.service_name, "sink": sink_kind},
            )
            return

        try:
            await alert.sink.send(alert.text, remaining)
        except Exception as e:
            self._record(alert, error=str(e) or type(e).__name__)
            log_notification_outcome(self.logger, alert.service_name, sink_kind, e)
            return

        self._record(alert)
        log_notification_outcome(self.logger, alert.service_name, sink_kind)

    def _record(self, alert: Alert, error: Optional[str] = None) -> None:
        self._outcomes.append(
            NotificationOutcome(
                alert=alert, sink_kind=alert.sink.kind, success=error is None, error=error
            )
        )

    async def abandon(self, reason: str) -> List[NotificationOutcome]:
        """
        Cancel in-flight sends and give up on queued alerts.

        Every alert without an outcome is recorded as failed with the reason.

        Returns:
            Outcome of every alert submitted so far
        """
        # A send records its outcome when it finishes, so a cancelled or
        # unfinished task has no outcome yet
        cancelled = []
        for task, alert in self._tasks.items():
            if not task.done():
                task.cancel()
                cancelled.append(task)
            if task.cancelled() or not task.done():
                self._record(alert, error=reason)

        while not self._intake.empty():
            item = self._intake.get_nowait()
            if item is not None:
                self._record(item, error=reason)

        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)

        abandoned = sum(1 for outcome in self._outcomes if outcome.error == reason)
        if abandoned:
            self.logger.warning(f"Abandoned {abandoned} notifications: {reason}")

        return list(self._outcomes)
