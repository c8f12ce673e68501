"""
RQ worker pool and reconciliation sweep for the notification cascade
"""
import logging
import os
import signal
import time
from datetime import datetime, timedelta
from typing import List, Optional

import redis
from dotenv import load_dotenv
from rq import Worker
from rq.worker_pool import WorkerPool

from ..config.redis import create_redis_connection
from ..config.settings import Settings, load_settings
from ..lifecycle import AppointmentLifecycle, build_lifecycle
from ..utils.time_utils import now_utc
from .models import Patient, ScheduledMessage
from .queue import DelayedQueue
from .tracker import MessageTracker

logger = logging.getLogger("cascade-worker")


class CascadeWorker:
    """
    Runs a pool of RQ workers that consume the message queue.

    Each worker is a separate process, so a dispatch blocked on a provider
    call never holds up its siblings. The pool's workers also run RQ's
    scheduler, which moves delayed jobs onto the queue once they are due.
    """

    def __init__(self, settings: Optional[Settings] = None, connection: Optional[redis.Redis] = None):
        self.settings = settings or load_settings()
        self.connection = connection or create_redis_connection(decode_responses=False)
        self.queue = DelayedQueue(self.connection, self.settings.queue_name)
        self.pool: Optional[WorkerPool] = None

    def start(self, burst: bool = False, logging_level: str = "INFO"):
        """
        Start the worker pool and block until it stops

        Args:
            burst: Exit once the queue is empty instead of waiting for jobs
            logging_level: Log level passed to the RQ workers
        """
        logger.info(
            f"Starting {self.settings.worker_concurrency} workers on queue "
            f"'{self.settings.queue_name}'"
        )
        self.pool = WorkerPool(
            [self.settings.queue_name],
            connection=self.connection,
            num_workers=self.settings.worker_concurrency
        )
        # WorkerPool installs its own SIGINT/SIGTERM handlers
        self.pool.start(burst=burst, logging_level=logging_level)
        logger.info("Worker pool stopped")

    def get_stats(self) -> dict:
        """Get statistics about the workers and queue"""
        stats = self.queue.stats()
        stats["worker_count"] = Worker.count(connection=self.connection)
        stats["concurrency"] = self.settings.worker_concurrency
        return stats


class ReconciliationSweep:
    """
    Detects tracker rows that lost their queue job.

    A row is an orphan when it is still PENDING or QUEUED, was due more than
    the grace period ago and its handle no longer names a waiting or running
    job. Orphans are reported, never resolved: which terminal status they
    deserve is left to an operator.
    """

    def __init__(self, tracker: MessageTracker, queue: DelayedQueue, grace_seconds: int = 900):
        self.tracker = tracker
        self.queue = queue
        self.grace_seconds = grace_seconds

    def find_orphans(self, now: Optional[datetime] = None, limit: int = 500) -> List[ScheduledMessage]:
        now = now or now_utc()
        cutoff = now - timedelta(seconds=self.grace_seconds)

        orphans = []
        for message in self.tracker.list_active(due_before=cutoff, limit=limit):
            if message.job_handle and self.queue.is_live(message.job_handle):
                continue
            orphans.append(message)
            logger.warning(
                f"Orphaned {message.status.value} {message.message_type.value} {message.id} "
                f"for appointment {message.appointment_id}: due {message.scheduled_for.isoformat()}, "
                f"job {message.job_handle} not live"
            )

        if orphans:
            logger.warning(f"Reconciliation found {len(orphans)} orphaned messages")
        else:
            logger.debug("Reconciliation found no orphaned messages")
        return orphans


class SweepDaemon:
    """
    Runs the reconciliation sweep on an interval
    """

    def __init__(self, sweep: ReconciliationSweep):
        self.sweep = sweep
        self.running = False

        # Set up signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Sweep daemon received signal {signum}, shutting down...")
        self.running = False

    def run(self, check_interval: int = 300):
        """
        Run the sweep until stopped

        Args:
            check_interval: Seconds between sweeps
        """
        logger.info(f"Starting reconciliation sweep daemon (every {check_interval}s)")
        self.running = True

        while self.running:
            try:
                self.sweep.find_orphans()
            except redis.RedisError as e:
                logger.error(f"Reconciliation sweep failed: {e}", exc_info=True)
            time.sleep(check_interval)

        logger.info("Sweep daemon stopped")


EVENT_MODES = ("book", "cancel", "complete")


def trigger_event(lifecycle: AppointmentLifecycle, args) -> str:
    """
    Fire one lifecycle event from the command line

    book creates an appointment --hours-ahead from now for the given
    patient; cancel and complete act on --appointment-id.
    """
    if args.mode == "book":
        patient = Patient(name=args.name, phone=args.phone, email=args.email or "")
        if args.patient_id:
            patient.id = args.patient_id
        appointment = lifecycle.booking_created(
            patient,
            now_utc() + timedelta(hours=args.hours_ahead),
            booking_ref=args.booking_ref
        )
        return f"Booked appointment {appointment.id} at {appointment.scheduled_at.isoformat()}"

    if not args.appointment_id:
        raise ValueError(f"--appointment-id is required for {args.mode}")

    if args.mode == "cancel":
        count = lifecycle.booking_cancelled(args.appointment_id)
        return f"Cancelled appointment {args.appointment_id} ({count} messages withdrawn)"

    if lifecycle.mark_completed(args.appointment_id):
        return f"Completed appointment {args.appointment_id}"
    return f"Appointment {args.appointment_id} was not completed"


def main():
    """
    Main function for running the worker pool, the reconciliation sweep or
    a one-off lifecycle event (book, cancel, complete)
    """
    import argparse

    load_dotenv()

    parser = argparse.ArgumentParser(description="Appointment notification cascade worker")
    parser.add_argument(
        "mode",
        choices=["worker", "sweep"] + list(EVENT_MODES),
        help="Mode to run: worker (deliver due messages), sweep (report orphaned messages) "
             "or book/cancel/complete (fire a lifecycle event)"
    )
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Exit once the queue is empty (worker mode)"
    )
    parser.add_argument(
        "--check-interval",
        type=int,
        default=300,
        help="Seconds between sweeps (default: 300)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit (sweep mode)"
    )
    parser.add_argument("--appointment-id", help="Appointment to cancel or complete")
    parser.add_argument("--patient-id", help="Patient id for book (generated if omitted)")
    parser.add_argument("--name", default="Test Patient", help="Patient name for book")
    parser.add_argument("--phone", default="", help="Patient phone for book")
    parser.add_argument("--email", default="", help="Patient email for book")
    parser.add_argument("--booking-ref", help="Booking reference for book")
    parser.add_argument(
        "--hours-ahead",
        type=float,
        default=48,
        help="Hours from now to book the consult (default: 48)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level"
    )

    args = parser.parse_args()

    # Set up logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = load_settings()

    if args.mode == "worker":
        worker = CascadeWorker(settings)
        worker.start(burst=args.burst, logging_level=args.log_level)

    elif args.mode == "sweep":
        sweep = ReconciliationSweep(
            MessageTracker(create_redis_connection(decode_responses=True)),
            DelayedQueue(create_redis_connection(decode_responses=False), settings.queue_name),
            grace_seconds=settings.orphan_grace_seconds
        )
        if args.once:
            orphans = sweep.find_orphans()
            print(f"{len(orphans)} orphaned messages")
            return
        SweepDaemon(sweep).run(check_interval=args.check_interval)

    elif args.mode in EVENT_MODES:
        print(trigger_event(build_lifecycle(settings), args))


if __name__ == "__main__":
    main()
