"""
Check-and-notify pipeline for check-service-certs.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from check_service_certs.certificate import CertificateReadError, read_certificate
from check_service_certs.config import Config, format_duration, parse_duration
from check_service_certs.dispatcher import NotificationDispatcher
from check_service_certs.expiry import Expiring, ExpiryVerdict, evaluate, verdict_for_error
from check_service_certs.logger import get_logger, log_cert_error, log_cert_verdict
from check_service_certs.notifications import (
    Alert,
    NotificationOutcome,
    NotificationSink,
    build_sinks,
)
from check_service_certs.services import ServiceUnit
from check_service_certs.template import AlertTemplate, TemplateRenderError
from check_service_certs.threads import run_in_thread

DEFAULT_TIMEOUT = "2m"

SinkFactory = Callable[[Config, str, datetime, bool], List[NotificationSink]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunSummary:
    """What happened during one run."""

    verdicts: Dict[Tuple[str, str], ExpiryVerdict] = field(default_factory=dict)
    failures: Dict[Tuple[str, str], ExpiryVerdict] = field(default_factory=dict)
    alerts: List[Alert] = field(default_factory=list)
    outcomes: List[NotificationOutcome] = field(default_factory=list)
    timed_out: bool = False
    interrupted: bool = False
    duration: float = 0.0

    @property
    def expiring(self) -> Dict[Tuple[str, str], ExpiryVerdict]:
        return {k: v for k, v in self.verdicts.items() if isinstance(v, Expiring)}

    @property
    def sent(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)


class CheckOrchestrator:
    """
    Checks every certificate of every service and dispatches alerts.

    One task runs per (service, certificate path). Failures are contained in
    the task that hit them. Alerts go to a NotificationDispatcher as soon as
    they are built, so delivery overlaps with the remaining checks. The whole
    run shares one deadline. File reads and SMTP sessions run on daemon
    threads that are abandoned, not joined, once the deadline passes, so the
    process can always exit shortly after it.
    """

    def __init__(
        self,
        config: Config,
        template: Optional[AlertTemplate] = None,
        test_mode: bool = False,
        clock: Callable[[], datetime] = utcnow,
        sink_factory: SinkFactory = build_sinks,
        workers: int = 8,
    ):
        self.config = config
        self.template = template or AlertTemplate(config.global_settings.template)
        self.test_mode = test_mode
        self.workers = workers
        self.logger = get_logger("orchestrator")

        self._clock = clock
        self._sink_factory = sink_factory

    def deadline(self) -> timedelta:
        """Get the run deadline from global.timeout, falling back to the default."""
        default = parse_duration(DEFAULT_TIMEOUT)
        value = self.config.global_settings.timeout
        if not value:
            self.logger.debug(f"No global timeout configured. Using default of {DEFAULT_TIMEOUT}")
            return default
        try:
            timeout = parse_duration(value)
        except ValueError as e:
            self.logger.error(
                f"Could not parse global timeout: {e}. Using default of {DEFAULT_TIMEOUT}"
            )
            return default
        if timeout <= timedelta(0):
            self.logger.error(
                f"Global timeout must be positive, got {value}. Using default of {DEFAULT_TIMEOUT}"
            )
            return default
        return timeout

    async def execute(
        self,
        services: Sequence[ServiceUnit],
        shutdown_event: Optional[asyncio.Event] = None,
        timeout: Optional[timedelta] = None,
    ) -> RunSummary:
        """
        Run checks and deliver alerts under one deadline.

        Args:
            services: Services to check
            shutdown_event: When set, the run stops as if the deadline expired
            timeout: Overrides the configured deadline

        Returns:
            Summary of the run
        """
        deadline = timeout if timeout is not None else self.deadline()
        summary = RunSummary()
        start_time = time.monotonic()

        if self.test_mode:
            self.logger.info("Running in test mode. Will not send messages")

        loop = asyncio.get_running_loop()
        dispatcher = NotificationDispatcher(deadline=loop.time() + deadline.total_seconds())
        pipeline = asyncio.create_task(self._pipeline(services, dispatcher, summary))
        waiters = {pipeline}

        stopper = None
        if shutdown_event is not None:
            stopper = asyncio.create_task(shutdown_event.wait())
            waiters.add(stopper)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=deadline.total_seconds(), return_when=asyncio.FIRST_COMPLETED
            )

            if pipeline in done:
                summary.outcomes = pipeline.result()
            else:
                if stopper is not None and stopper in done:
                    summary.interrupted = True
                    reason = "shutdown requested"
                else:
                    summary.timed_out = True
                    reason = f"global timeout of {format_duration(deadline)} exceeded"
                self.logger.warning(f"Stopping run early: {reason}")

                pipeline.cancel()
                await asyncio.gather(pipeline, return_exceptions=True)
                summary.outcomes = await dispatcher.abandon(reason)
        finally:
            if stopper is not None and not stopper.done():
                stopper.cancel()
                await asyncio.gather(stopper, return_exceptions=True)

        summary.duration = time.monotonic() - start_time
        self.logger.info(
            f"Finished run - Duration: {summary.duration:.2f}s, "
            f"Checked: {len(summary.verdicts)}, Expiring: {len(summary.expiring)}, "
            f"Errors: {len(summary.failures)}, Alerts: {len(summary.alerts)}, "
            f"Sent: {summary.sent}"
        )
        return summary

    async def _pipeline(
        self,
        services: Sequence[ServiceUnit],
        dispatcher: NotificationDispatcher,
        summary: RunSummary,
    ) -> List[NotificationOutcome]:
        drain = asyncio.create_task(dispatcher.drain())
        try:
            await self.run(services, dispatcher, summary)
            return await drain
        finally:
            if not drain.done():
                drain.cancel()
                await asyncio.gather(drain, return_exceptions=True)

    async def run(
        self,
        services: Sequence[ServiceUnit],
        dispatcher: NotificationDispatcher,
        summary: Optional[RunSummary] = None,
    ) -> List[Alert]:
        """
        Check every certificate path and submit alerts to the dispatcher.

        Returns once every check has finished; the dispatcher's intake is
        closed afterwards.

        Returns:
            Alerts submitted during this run
        """
        if summary is None:
            summary = RunSummary()
        read_slots = asyncio.Semaphore(self.workers)

        tasks = [
            asyncio.create_task(
                self._check_certificate(service, cert_path, dispatcher, summary, read_slots)
            )
            for service in services
            for cert_path in service.cert_paths
        ]
        self.logger.debug(f"Checking {len(tasks)} certificates across {len(services)} services")

        await asyncio.gather(*tasks)
        dispatcher.close()
        return list(summary.alerts)

    async def _check_certificate(
        self,
        service: ServiceUnit,
        cert_path: str,
        dispatcher: NotificationDispatcher,
        summary: RunSummary,
        read_slots: asyncio.Semaphore,
    ) -> None:
        try:
            await self._check(service, cert_path, dispatcher, summary, read_slots)
        except Exception as e:
            self.logger.exception(
                f"Unexpected error checking certificate: {e}",
                extra={"service": service.name, "cert_path": cert_path},
            )

    async def _check(
        self,
        service: ServiceUnit,
        cert_path: str,
        dispatcher: NotificationDispatcher,
        summary: RunSummary,
        read_slots: asyncio.Semaphore,
    ) -> None:
        key = (service.name, cert_path)
        now = self._clock()

        try:
            async with read_slots:
                record = await run_in_thread(
                    read_certificate, cert_path, service.name, name="cert-read"
                )
        except CertificateReadError as e:
            log_cert_error(self.logger, service.name, cert_path, e, e.kind)
            summary.failures[key] = verdict_for_error(e)
            return

        self.logger.debug(
            "Successfully ingested service certificate",
            extra={
                "service": service.name,
                "cert_path": cert_path,
                "expiration": record.not_after.isoformat(),
            },
        )

        verdict = evaluate(now, record.not_after, service.min_cert_lifetime)
        summary.verdicts[key] = verdict
        log_cert_verdict(
            self.logger,
            service.name,
            cert_path,
            record.not_after,
            format_duration(service.min_cert_lifetime),
            expiring=isinstance(verdict, Expiring),
        )

        if not isinstance(verdict, Expiring):
            return

        if self.test_mode:
            self.logger.info(
                f"Test mode: not sending alert, certificate expires in "
                f"{verdict.days_remaining} days",
                extra={
                    "service": service.name,
                    "cert_path": cert_path,
                    "days_remaining": verdict.days_remaining,
                },
            )
            return

        try:
            text = self.template.render(service.name, cert_path, verdict.days_remaining)
        except TemplateRenderError as e:
            self.logger.error(
                str(e),
                extra={
                    "service": service.name,
                    "cert_path": cert_path,
                    "template_path": self.template.path,
                    "error_type": "TemplateRenderError",
                },
            )
            return

        for sink in self._sink_factory(self.config, service.name, now, self.test_mode):
            alert = Alert(service_name=service.name, cert_path=cert_path, text=text, sink=sink)
            summary.alerts.append(alert)
            dispatcher.submit(alert)
