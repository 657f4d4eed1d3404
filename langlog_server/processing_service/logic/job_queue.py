# langlog_server/processing_service/logic/job_queue.py
"""
Label job queue.

Label processing and label fan-out run as detached jobs. Jobs requested
inside a database transaction are only handed to a publisher once that
transaction commits, so a consumer never receives an id it cannot see yet.
Delivery is at-least-once; handlers must be idempotent.
"""

import enum
import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional

import pika
from pika.exceptions import AMQPConnectionError
from pydantic import BaseModel
from sqlalchemy import event
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import LanguageCode
from langlog_server.processing_service.logic.settings import Settings as ServiceSettingsType

logger = logging.getLogger(__name__)

PENDING_JOBS_KEY = "langlog_pending_label_jobs"


class LabelJobKind(str, enum.Enum):
    PROCESS_LABEL = 'process_label'
    FAN_OUT_LABEL = 'fan_out_label'


class LabelJob(BaseModel):
    kind: LabelJobKind
    content_label_id: uuid.UUID
    content_key: str
    language_code: Optional[LanguageCode] = None


class RabbitMQJobPublisher:
    """Publishes label jobs to a durable RabbitMQ queue."""

    def __init__(self, settings: ServiceSettingsType):
        self.settings = settings
        self.connection = None
        self.channel = None
        # BlockingConnection is not thread-safe; API request threads share one publisher
        self._lock = threading.Lock()

    def connect(self) -> bool:
        try:
            credentials = pika.PlainCredentials(self.settings.RABBITMQ_USER, self.settings.RABBITMQ_PASS)
            parameters = pika.ConnectionParameters(
                host=self.settings.RABBITMQ_HOST,
                port=self.settings.RABBITMQ_PORT,
                credentials=credentials
            )
            self.connection = pika.BlockingConnection(parameters)
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.settings.LABEL_JOBS_QUEUE, durable=True)
            logger.info(f"Connected to RabbitMQ at {self.settings.RABBITMQ_HOST}:{self.settings.RABBITMQ_PORT}")
            return True
        except AMQPConnectionError as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            return False

    def publish(self, job: LabelJob) -> bool:
        with self._lock:
            return self._publish(job)

    def _publish(self, job: LabelJob) -> bool:
        if not self.connection or self.connection.is_closed:
            if not self.connect():
                return False

        try:
            self.channel.basic_publish(
                exchange='',
                routing_key=self.settings.LABEL_JOBS_QUEUE,
                body=job.model_dump_json(),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type='application/json',
                    timestamp=int(datetime.now(timezone.utc).timestamp())
                )
            )
            logger.info(f"Published {job.kind.value} job for {job.content_key} to {self.settings.LABEL_JOBS_QUEUE}")
            return True
        except Exception as e:
            logger.error(f"Failed to publish {job.kind.value} job for {job.content_key}: {e}")
            return False

    def close(self):
        if self.connection and not self.connection.is_closed:
            self.connection.close()
            logger.info("RabbitMQ connection closed")


class InMemoryJobQueue:
    """
    FIFO queue of label jobs held in process memory.

    With a handler the queue runs jobs as soon as they are published
    (single-process deployments); without one, jobs wait for drain().
    """

    def __init__(self, handler: Optional[Callable[[LabelJob], None]] = None):
        self.jobs: Deque[LabelJob] = deque()
        self.handler = handler
        self._draining = False

    def publish(self, job: LabelJob) -> bool:
        self.jobs.append(job)
        logger.debug(f"Queued {job.kind.value} job for {job.content_key} in memory")
        if self.handler is not None and not self._draining:
            self.drain(self.handler)
        return True

    def drain(self, handler: Callable[[LabelJob], None]) -> int:
        """Runs queued jobs in order, including jobs queued while draining. Returns the count run."""
        ran = 0
        self._draining = True
        try:
            while self.jobs:
                job = self.jobs.popleft()
                try:
                    handler(job)
                except Exception as e:
                    logger.error(f"In-memory {job.kind.value} job for {job.content_key} failed: {e}", exc_info=True)
                ran += 1
        finally:
            self._draining = False
        return ran

    def __len__(self):
        return len(self.jobs)


def _publish_pending(session: SQLAlchemySession) -> None:
    # Also fired when a SAVEPOINT is released; only the outermost commit publishes
    if session.in_nested_transaction():
        return
    pending: List = session.info.pop(PENDING_JOBS_KEY, [])
    for publisher, job in pending:
        if not publisher.publish(job):
            # The label row is committed and stays queued; the retry endpoint can requeue it
            logger.error(f"Could not publish {job.kind.value} job for {job.content_key}")


def _discard_pending(session: SQLAlchemySession, transaction) -> None:
    if transaction.parent is not None:
        return
    pending = session.info.pop(PENDING_JOBS_KEY, [])
    if pending:
        logger.info(f"Discarded {len(pending)} label job(s) after rollback")


def schedule_after_commit(session: SQLAlchemySession, publisher, job: LabelJob) -> None:
    """Publishes `job` once the outermost transaction commits; drops it if that transaction ends otherwise."""
    if PENDING_JOBS_KEY not in session.info:
        session.info[PENDING_JOBS_KEY] = []
        if not event.contains(session, "after_commit", _publish_pending):
            event.listen(session, "after_commit", _publish_pending)
            event.listen(session, "after_transaction_end", _discard_pending)
    session.info[PENDING_JOBS_KEY].append((publisher, job))
