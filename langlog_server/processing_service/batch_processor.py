import argparse
import logging
import uuid
from typing import Optional

from langlog_server.processing_service.db_session import check_db_connection, get_db_session
from langlog_server.processing_service.logic.pending_work import find_users_with_pending_work
from langlog_server.processing_service.logic.session_reconstructor import (
    DEFAULT_BATCH_LIMIT, process_user_batch, translate_batch
)
from langlog_server.processing_service.models import TranslateBatchResult

# --- Configure Logging ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_translate_batch(limit: int = DEFAULT_BATCH_LIMIT, user_id: Optional[uuid.UUID] = None) -> TranslateBatchResult:
    with get_db_session() as db:
        if user_id is not None:
            return process_user_batch(db, user_id, limit=limit)
        return translate_batch(db, limit=limit)


def run_pending_users(limit: int = DEFAULT_BATCH_LIMIT, max_users: int = 100) -> TranslateBatchResult:
    """Drains users from the pending work index, one transaction per user."""
    with get_db_session() as db:
        user_ids = find_users_with_pending_work(db, limit=max_users)
    logger.info(f"Found {len(user_ids)} user(s) with pending content work.")

    total = TranslateBatchResult()
    for user_id in user_ids:
        try:
            total.merge(run_translate_batch(limit=limit, user_id=user_id))
        except Exception as e:
            logger.error(f"Batch for user {user_id} failed: {e}", exc_info=True)
            total.failed_groups += 1
    return total


def main():
    """
    Command-line entry point for a one-shot session reconstruction run.
    """
    parser = argparse.ArgumentParser(description="Fold pending content events into language activities.")
    parser.add_argument("--limit", type=int, default=DEFAULT_BATCH_LIMIT,
                        help="Maximum number of events to consider (1-2000).")
    parser.add_argument("--user-id", type=uuid.UUID, default=None,
                        help="Restrict the run to one user.")
    parser.add_argument("--pending-users", action="store_true",
                        help="Process every user in the pending work index, one at a time.")
    args = parser.parse_args()

    if not check_db_connection():
        logger.error("Database connection failed. Aborting batch run.")
        raise SystemExit(1)

    if args.pending_users:
        result = run_pending_users(limit=args.limit)
    else:
        result = run_translate_batch(limit=args.limit, user_id=args.user_id)
    logger.info(f"Batch run finished: {result.model_dump(by_alias=True)}")


if __name__ == "__main__":
    main()
