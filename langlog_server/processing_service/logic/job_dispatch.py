# langlog_server/processing_service/logic/job_dispatch.py
"""
Wiring between label jobs and their handler.

`build_job_publisher` picks the backend named by LABEL_JOB_BACKEND. The
"inline" backend runs each job in a fresh database session right after the
requesting transaction commits.
"""

import logging
from typing import Optional

from langlog_server.processing_service.db_session import get_db_session
from langlog_server.processing_service.logic.content_labels import handle_label_job
from langlog_server.processing_service.logic.job_queue import InMemoryJobQueue, LabelJob, RabbitMQJobPublisher
from langlog_server.processing_service.logic.label_processors import LabelProcessorRegistry, build_default_registry
from langlog_server.processing_service.logic.settings import Settings as ServiceSettingsType

logger = logging.getLogger(__name__)

BACKEND_RABBITMQ = "rabbitmq"
BACKEND_INLINE = "inline"


def run_label_job(job: LabelJob, registry: LabelProcessorRegistry, publisher) -> None:
    """Runs one job in its own transaction. Follow-up jobs are published after it commits."""
    with get_db_session() as db:
        handle_label_job(db, job, registry, publisher)


def build_job_publisher(settings: ServiceSettingsType, registry: Optional[LabelProcessorRegistry] = None):
    backend = (settings.LABEL_JOB_BACKEND or BACKEND_RABBITMQ).lower()
    if backend == BACKEND_RABBITMQ:
        return RabbitMQJobPublisher(settings)
    if backend == BACKEND_INLINE:
        registry = registry or build_default_registry(settings)
        queue = InMemoryJobQueue()
        queue.handler = lambda job: run_label_job(job, registry, queue)
        logger.info("Label jobs run inline after commit")
        return queue
    raise ValueError(f"Unknown LABEL_JOB_BACKEND {settings.LABEL_JOB_BACKEND!r}")
