import logging

from atas.db.session import SessionLocal
from atas.etl.client import ComprasClient
from atas.etl.coordinator import SyncCoordinator, SyncResult

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def sync_daily(coordinator: SyncCoordinator) -> SyncResult:
    result = coordinator.run_incremental()
    logger.info(result.message)
    failed = coordinator.progress.failed_pages()
    if failed:
        logger.warning(f"{len(failed)} page(s) failed: {failed}. Run resume to retry them.")
    return result


if __name__ == "__main__":
    client = ComprasClient()
    try:
        logger.info("daily sync started")
        sync_daily(SyncCoordinator(client, SessionLocal))
        logger.info("daily sync done")
    finally:
        client.close()
