import json
import logging
import time

import pika
from pika.exceptions import AMQPConnectionError
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from langlog_server.processing_service.db_session import check_db_connection
from langlog_server.processing_service.errors import ContentLabelNotFoundError, InvalidStageTransitionError
from langlog_server.processing_service.logic.job_dispatch import run_label_job
from langlog_server.processing_service.logic.job_queue import LabelJob, RabbitMQJobPublisher
from langlog_server.processing_service.logic.label_processors import LabelProcessorRegistry, build_default_registry
from langlog_server.processing_service.logic.settings import settings

# --- Configure Logging ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logging.getLogger("pika").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


class LabelJobConsumer:
    """Consumes label jobs from RabbitMQ and runs them one at a time."""

    def __init__(self, registry: LabelProcessorRegistry, publisher: RabbitMQJobPublisher):
        self.registry = registry
        self.publisher = publisher

    def on_message(self, channel, method, properties, body):
        """
        Callback for one delivery on the label jobs queue.

        Args:
            channel: The channel object.
            method: The method frame.
            properties: The properties of the message.
            body: The message body.
        """
        logger.info(f"Received label job with delivery tag {method.delivery_tag}")

        try:
            job = LabelJob.model_validate_json(body)
            run_label_job(job, self.registry, self.publisher)
            logger.info(f"Finished {job.kind.value} job for {job.content_key}.")
            channel.basic_ack(delivery_tag=method.delivery_tag)

        except (ValidationError, json.JSONDecodeError) as e:
            logger.error(f"Unrecoverable data error for label job {method.delivery_tag}: {e}. Discarding.")
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        except (ContentLabelNotFoundError, InvalidStageTransitionError) as e:
            # The label was deleted or moved on since the job was published
            logger.warning(f"Stale label job {method.delivery_tag}: {e}. Discarding.")
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        except (SQLAlchemyError, AMQPConnectionError) as e:
            logger.error(f"Recoverable error on label job {method.delivery_tag}: {e}. Requeuing.", exc_info=True)
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
        except Exception as e:
            logger.error(f"Unexpected error on label job {method.delivery_tag}: {e}", exc_info=True)
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)


def main():
    """Main function to connect to RabbitMQ and start consuming label jobs."""
    connection = None

    logger.info("Label worker starting up...")
    if not check_db_connection():
        logger.error("Initial database connection failed. Please check DB settings. Worker will not start.")
        return
    logger.info("Initial database connection successful.")

    publisher = RabbitMQJobPublisher(settings)
    consumer = LabelJobConsumer(build_default_registry(settings), publisher)
    logger.info(f"Registered label processors: {consumer.registry.sources()}")

    while True:
        try:
            logger.info(f"Attempting to connect to RabbitMQ at {settings.RABBITMQ_HOST}:{settings.RABBITMQ_PORT}...")
            credentials = pika.PlainCredentials(settings.RABBITMQ_USER, settings.RABBITMQ_PASS)
            connection = pika.BlockingConnection(pika.ConnectionParameters(
                host=settings.RABBITMQ_HOST,
                port=settings.RABBITMQ_PORT,
                credentials=credentials,
                heartbeat=600,
                blocked_connection_timeout=300
            ))
            channel = connection.channel()
            channel.queue_declare(queue=settings.LABEL_JOBS_QUEUE, durable=True)
            channel.basic_qos(prefetch_count=1)
            channel.basic_consume(queue=settings.LABEL_JOBS_QUEUE, on_message_callback=consumer.on_message)

            logger.info(f"Starting to consume messages from '{settings.LABEL_JOBS_QUEUE}'...")
            channel.start_consuming()
        except AMQPConnectionError as e:
            logger.error(f"Connection to RabbitMQ failed: {e}. Retrying in {settings.RECONNECT_DELAY_SECONDS} seconds...")
            time.sleep(settings.RECONNECT_DELAY_SECONDS)
        except KeyboardInterrupt:
            logger.info("Worker stopped by user.")
            if connection and connection.is_open:
                connection.close()
            publisher.close()
            break
        except Exception as e:
            logger.error(f"An unexpected error occurred in main loop: {e}. Retrying...", exc_info=True)
            if connection and connection.is_open:
                connection.close()
            time.sleep(settings.RECONNECT_DELAY_SECONDS)


if __name__ == '__main__':
    main()
