"""Dedicated APScheduler worker process that drains the plan job queue."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from plan_engine.core.config import settings
from plan_engine.core.logging import configure_logging
from plan_engine.db.session import SessionLocal
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.plan_jobs import PlanJobOrchestrator


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Plan worker starting (enabled=%s)", settings.scheduler_enabled)

    orchestrator = PlanJobOrchestrator(settings=settings, telemetry=Telemetry.from_settings(settings))
    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        _register_jobs(scheduler, orchestrator)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running queue jobs once on startup")
            run_stuck_sweep(orchestrator)
            run_queue_poll(orchestrator)
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Plan worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=True)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _register_jobs(scheduler: BackgroundScheduler, orchestrator: PlanJobOrchestrator) -> None:
    scheduler.add_job(
        run_queue_poll,
        trigger="interval",
        seconds=settings.queue_poll_seconds,
        args=[orchestrator],
        id="plan_job_queue",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        run_stuck_sweep,
        trigger="interval",
        seconds=settings.stuck_sweep_seconds,
        args=[orchestrator],
        id="plan_job_stuck_sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info(
        "Registered scheduler jobs (poll=%ss, sweep=%ss, batch=%s, worker=%s)",
        settings.queue_poll_seconds,
        settings.stuck_sweep_seconds,
        settings.worker_batch_size,
        orchestrator.worker_id,
    )


def run_queue_poll(orchestrator: PlanJobOrchestrator) -> int:
    session = SessionLocal()
    try:
        processed = orchestrator.process_pending(session, settings.worker_batch_size)
        if processed:
            logger.info("Queue poll complete: jobs=%s", processed)
        return processed
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Queue poll failed")
        return 0
    finally:
        session.close()


def run_stuck_sweep(orchestrator: PlanJobOrchestrator) -> None:
    session = SessionLocal()
    try:
        result = orchestrator.recover_stuck_jobs(session)
        removed = orchestrator.cleanup_old_jobs(session)
        logger.debug("Stuck sweep complete: reset=%s, failed=%s, removed=%s", result.reset, result.failed, removed)
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Stuck job sweep failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
