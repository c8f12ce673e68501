"""
DelayedQueue - durable delayed delivery of notification jobs on RQ

Jobs with a zero delay go straight onto the queue; everything else is parked
in RQ's scheduled registry until due. The job id doubles as the tracker
row's job handle.
"""
import logging
from datetime import timedelta
from typing import Any, Dict

import redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from .errors import QueueUnavailableError

logger = logging.getLogger("delayed-queue")

DISPATCH_FUNCTION = "notify_cascade.scheduling.tasks.dispatch_message"

# Jobs in these states can still be withdrawn before they run
REMOVABLE_STATUSES = (JobStatus.SCHEDULED, JobStatus.QUEUED, JobStatus.DEFERRED)


class DelayedQueue:
    """
    Wraps an RQ queue with the enqueue/remove contract the cascade needs
    """

    def __init__(
        self,
        connection: redis.Redis,
        queue_name: str = "messages",
        job_timeout: int = 300,
        result_ttl: int = 86400,
        failure_ttl: int = 7 * 86400
    ):
        """
        Args:
            connection: Redis connection created with ``decode_responses=False``
            queue_name: RQ queue name shared with the worker pool
            job_timeout: Seconds a single dispatch may run
            result_ttl: Seconds finished jobs are kept
            failure_ttl: Seconds failed jobs are kept
        """
        self.connection = connection
        self.queue = Queue(queue_name, connection=connection)
        self.job_timeout = job_timeout
        self.result_ttl = result_ttl
        self.failure_ttl = failure_ttl

    def enqueue(self, kind: str, payload: Dict[str, Any], delay_ms: int, job_id: str) -> str:
        """
        Submit a dispatch job that becomes due after ``delay_ms``

        Args:
            kind: Message type, recorded as the job description
            payload: Job data handed to the dispatcher
            delay_ms: Milliseconds to wait; values <= 0 run as soon as possible
            job_id: Pre-generated handle for the job

        Returns:
            The job handle

        Raises:
            QueueUnavailableError: If Redis rejects the job
        """
        options = dict(
            job_id=job_id,
            description=kind,
            meta={"kind": kind},
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
            failure_ttl=self.failure_ttl,
        )

        try:
            if delay_ms <= 0:
                job = self.queue.enqueue(DISPATCH_FUNCTION, payload, **options)
            else:
                job = self.queue.enqueue_in(
                    timedelta(milliseconds=delay_ms), DISPATCH_FUNCTION, payload, **options
                )
        except redis.RedisError as e:
            raise QueueUnavailableError(f"Failed to enqueue {kind} job {job_id}: {e}") from e

        logger.debug(f"Enqueued {kind} job {job.id} with delay {delay_ms}ms")
        return job.id

    def remove(self, handle: str) -> bool:
        """
        Withdraw a job that has not started yet

        Returns:
            True if the job was removed, False if it was unknown, already
            running, already finished or already removed
        """
        try:
            job = Job.fetch(handle, connection=self.connection)
        except NoSuchJobError:
            return False

        status = job.get_status(refresh=True)
        if status not in REMOVABLE_STATUSES:
            logger.debug(f"Job {handle} not removable (status {status})")
            return False

        job.delete()
        logger.debug(f"Removed job {handle}")
        return True

    def is_live(self, handle: str) -> bool:
        """Check whether a job handle refers to a job that is waiting or running"""
        try:
            job = Job.fetch(handle, connection=self.connection)
        except NoSuchJobError:
            return False
        return job.get_status(refresh=False) in REMOVABLE_STATUSES + (JobStatus.STARTED,)

    def stats(self) -> Dict[str, int]:
        """Get queue and registry sizes"""
        return {
            "queue_size": len(self.queue),
            "scheduled_jobs": len(self.queue.scheduled_job_registry),
            "started_jobs": len(self.queue.started_job_registry),
            "failed_jobs": len(self.queue.failed_job_registry),
            "finished_jobs": len(self.queue.finished_job_registry),
        }
