import sys
import logging

from atas.db.session import SessionLocal
from atas.etl.client import ComprasClient
from atas.etl.coordinator import ParallelOptions, RunOutcome, SyncCoordinator, SyncResult

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def load_history(coordinator: SyncCoordinator, parallel: bool = False) -> SyncResult:
    """
    Full load of every ata of the unit. Failed pages are retried once
    through resume before giving up.
    """
    if parallel:
        result = coordinator.run_parallel(ParallelOptions())
    else:
        result = coordinator.run_full()
    logger.info(result.message)

    if coordinator.progress.failed_pages() and result.outcome != RunOutcome.CANCELLED:
        logger.info(f"Retrying failed pages {coordinator.progress.failed_pages()}")
        retry = coordinator.resume()
        logger.info(retry.message)
    return result


if __name__ == "__main__":
    client = ComprasClient()
    try:
        load_history(SyncCoordinator(client, SessionLocal), parallel='--parallel' in sys.argv)
        logger.info("historical load done")
    finally:
        client.close()
