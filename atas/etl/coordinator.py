import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from atas.config import SYNC_LAUNCH_INTERVAL_MS, SYNC_MAX_CONCURRENCY, SYNC_MAX_CONCURRENCY_LIMIT, SYNC_PAGE_DELAY
from atas.db.models import AgreementItem, CatalogItem, ItemDescription, PriceRegistration
from atas.db.settings import get_last_sync, record_last_sync
from atas.etl.client import FULL_WINDOW, ComprasClient, RawPage, SyncCancelled, ValidityWindow
from atas.etl.pages import PageOutcome, PageProcessor

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Synchronization already in progress"


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ParallelOptions(BaseModel):
    max_concurrency: int = Field(default=SYNC_MAX_CONCURRENCY, ge=1, le=SYNC_MAX_CONCURRENCY_LIMIT)
    launch_interval_ms: int = Field(default=SYNC_LAUNCH_INTERVAL_MS, ge=0)


class SyncResult(BaseModel):
    success: bool = False
    outcome: RunOutcome = RunOutcome.COMPLETED
    message: str = ""
    pages_processed: int = 0
    total_pages: int = 0
    items_processed: int = 0
    new_agreements: int = 0
    new_items: int = 0
    new_descriptions: int = 0
    errors: int = 0

    @classmethod
    def rejected(cls) -> "SyncResult":
        return cls(success=False, outcome=RunOutcome.REJECTED, message=ALREADY_RUNNING)

    def add_page(self, outcome: Optional[PageOutcome]):
        self.pages_processed += 1
        if outcome is None:
            self.errors += 1
            return
        self.items_processed += outcome.processed
        self.new_agreements += outcome.new_agreements
        self.new_items += outcome.new_line_items
        self.new_descriptions += outcome.new_descriptions


class SyncStatus(BaseModel):
    running: bool
    total_pages: int
    pages_processed: int
    pages_succeeded: int
    pages_pending: int
    pages_failed: int
    items_processed: int
    failed_pages: List[int]
    last_sync_at: Optional[datetime] = None
    latest_validity_start: Optional[date] = None
    total_agreements: int = 0


class SyncProgress:
    """
    Counters of the current (or last) run, shared between page workers.
    Every read and write goes through the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.running = False
        self.total_pages = 0
        self.pages_processed = 0
        self.pages_failed = 0
        self.items_processed = 0
        self._failed_pages = set()

    def start(self, total_pages: int = 0, clear_failed: bool = True):
        with self._lock:
            self.running = True
            self.total_pages = total_pages
            self.pages_processed = 0
            self.pages_failed = 0
            self.items_processed = 0
            if clear_failed:
                self._failed_pages.clear()

    def finish(self):
        with self._lock:
            self.running = False

    def set_total_pages(self, total_pages: int):
        with self._lock:
            self.total_pages = total_pages

    def page_succeeded(self, items: int):
        with self._lock:
            self.pages_processed += 1
            self.items_processed += items

    def page_failed(self, page: int):
        with self._lock:
            self.pages_processed += 1
            self.pages_failed += 1
            self._failed_pages.add(page)

    def forget_failed(self, pages) -> int:
        with self._lock:
            self._failed_pages.difference_update(pages)
            self.pages_failed = len(self._failed_pages)
            return self.pages_failed

    def clear(self):
        with self._lock:
            self.total_pages = 0
            self.pages_processed = 0
            self.pages_failed = 0
            self.items_processed = 0
            self._failed_pages.clear()

    def failed_pages(self) -> List[int]:
        with self._lock:
            return sorted(self._failed_pages)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                'running': self.running,
                'total_pages': self.total_pages,
                'pages_processed': self.pages_processed,
                'pages_succeeded': max(self.pages_processed - self.pages_failed, 0),
                'pages_pending': max(self.total_pages - self.pages_processed, 0) if self.running else 0,
                'pages_failed': self.pages_failed,
                'items_processed': self.items_processed,
                'failed_pages': sorted(self._failed_pages),
            }


class SyncCoordinator:
    """
    Drives ingestion runs against the ARP items endpoint. One instance per
    process; it owns the run lock, the cancellation signal and the progress.
    """

    def __init__(self, client: ComprasClient, session_factory: Callable[[], Session],
                 processor: Optional[PageProcessor] = None, page_delay: float = SYNC_PAGE_DELAY):
        self.client = client
        self.session_factory = session_factory
        self.processor = processor or PageProcessor(session_factory)
        self.page_delay = page_delay
        self.progress = SyncProgress()
        self._run_lock = threading.Lock()
        self._cancel_event: Optional[threading.Event] = None
        # failed pages only make sense inside the window that produced them
        self._failed_window = FULL_WINDOW

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @contextmanager
    def _exclusive_run(self):
        if not self._run_lock.acquire(blocking=False):
            yield None
            return
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        try:
            yield cancel_event
        finally:
            self._cancel_event = None
            self.progress.finish()
            self._run_lock.release()

    def stop(self) -> bool:
        cancel_event = self._cancel_event
        if cancel_event is None:
            return False
        logger.warning("Stop requested for the running synchronization")
        cancel_event.set()
        return True

    # Entry points

    def run_full(self) -> SyncResult:
        return self._run_sequential(FULL_WINDOW, "No records found")

    def run_incremental(self) -> SyncResult:
        latest = self._latest_validity_start()
        if latest is None:
            logger.info("No atas stored yet, running a full synchronization")
            return self.run_full()

        window = ValidityWindow(latest - timedelta(days=1), date.today() + timedelta(days=365))
        logger.info(f"Incremental synchronization from {window.start} to {window.end}")
        return self._run_sequential(window, "Already up to date, no new atas found")

    def run_parallel(self, options: Optional[ParallelOptions] = None) -> SyncResult:
        options = options or ParallelOptions()
        with self._exclusive_run() as cancel_event:
            if cancel_event is None:
                return SyncResult.rejected()

            logger.info(f"Starting PARALLEL synchronization - interval {options.launch_interval_ms}ms, "
                        f"max concurrency {options.max_concurrency}")
            self._start_run(FULL_WINDOW)
            result = SyncResult()
            first_page = self._bootstrap(FULL_WINDOW, cancel_event, result, "No records found")
            if first_page is None:
                return result

            interval = options.launch_interval_ms / 1000
            slots = threading.BoundedSemaphore(options.max_concurrency)
            futures = []
            with ThreadPoolExecutor(max_workers=options.max_concurrency, thread_name_prefix='sync-page') as pool:
                for page in range(2, first_page.total_pages + 1):
                    # launches are spaced, completions are not
                    if cancel_event.wait(interval if futures else 0):
                        break
                    if not self._acquire_slot(slots, cancel_event):
                        break
                    futures.append(pool.submit(self._parallel_worker, page, FULL_WINDOW, cancel_event, slots))

                logger.info(f"Waiting for {len(futures)} pages in flight...")
                for future in futures:
                    outcome, cancelled = future.result()
                    if not cancelled:
                        result.add_page(outcome)

            self._finish(result, cancel_event)
            self._record_last_sync()
            return result

    def resume(self) -> SyncResult:
        if not self.progress.failed_pages():
            return SyncResult(success=True, message="No failed pages to resume")

        with self._exclusive_run() as cancel_event:
            if cancel_event is None:
                return SyncResult.rejected()

            pending = self.progress.failed_pages()
            if not pending:
                return SyncResult(success=True, message="No failed pages to resume")

            window = self._failed_window
            self.progress.start(total_pages=len(pending), clear_failed=False)
            result = SyncResult(total_pages=len(pending))
            logger.info(f"Resuming synchronization: {len(pending)} pages to reprocess: "
                        f"{', '.join(str(p) for p in pending)}")

            recovered = []
            for index, page in enumerate(pending):
                if cancel_event.wait(self.page_delay if index else 0):
                    break
                try:
                    outcome = self._handle_page(page, window, cancel_event)
                except SyncCancelled:
                    logger.warning(f"Resume cancelled by the user at page {page}")
                    break
                result.add_page(outcome)
                if outcome is not None:
                    recovered.append(page)

            still_failed = self.progress.forget_failed(recovered)

            if cancel_event.is_set():
                self._cancelled(result)
            else:
                result.success = result.errors == 0
                result.outcome = RunOutcome.COMPLETED if result.success else RunOutcome.FAILED
                result.message = (
                    f"Resume finished: {result.items_processed} items ({result.new_items} new)"
                    if result.success else
                    f"Resume finished with {result.errors} error(s). {still_failed} page(s) still pending"
                )

            if result.items_processed > 0:
                self._record_last_sync()
            return result

    # Status and maintenance

    def status(self) -> SyncStatus:
        snapshot = self.progress.snapshot()
        db = self.session_factory()
        try:
            last_sync = get_last_sync(db)
            latest = db.query(func.max(PriceRegistration.data_vigencia_inicial)).scalar()
            total = db.query(func.count(PriceRegistration.id)).scalar() or 0
        finally:
            db.close()
        return SyncStatus(**snapshot, last_sync_at=last_sync, latest_validity_start=latest,
                          total_agreements=total)

    def reset_data(self) -> Optional[dict]:
        """
        Deletes every ingested row. Returns None when a run is active.
        The run lock is held without a cancel event, so stop() has nothing to stop.
        """
        if not self._run_lock.acquire(blocking=False):
            return None
        try:
            db = self.session_factory()
            try:
                deleted = {
                    'ata_items': db.query(AgreementItem).delete(synchronize_session=False),
                    'item_descriptions': db.query(ItemDescription).delete(synchronize_session=False),
                    'atas': db.query(PriceRegistration).delete(synchronize_session=False),
                    'items': db.query(CatalogItem).delete(synchronize_session=False),
                }
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
            self.progress.clear()
            logger.warning(f"Ingested data deleted: {deleted}")
            return deleted
        finally:
            self._run_lock.release()

    # Core loop

    def _run_sequential(self, window: ValidityWindow, empty_message: str) -> SyncResult:
        with self._exclusive_run() as cancel_event:
            if cancel_event is None:
                return SyncResult.rejected()

            logger.info(f"Starting synchronization for unit {self.client.unit_code}, "
                        f"validity start {window.start} to {window.end}")
            self._start_run(window)
            result = SyncResult()
            first_page = self._bootstrap(window, cancel_event, result, empty_message)
            if first_page is None:
                return result

            for page in range(2, first_page.total_pages + 1):
                # politeness delay; returns early when stop() is called
                if cancel_event.wait(self.page_delay):
                    break
                try:
                    outcome = self._handle_page(page, window, cancel_event)
                except SyncCancelled:
                    logger.warning(f"Synchronization cancelled by the user at page {page}")
                    break
                result.add_page(outcome)

            self._finish(result, cancel_event)
            self._record_last_sync()
            return result

    def _start_run(self, window: ValidityWindow):
        self.progress.start()
        self._failed_window = window

    def _bootstrap(self, window: ValidityWindow, cancel_event: threading.Event,
                   result: SyncResult, empty_message: str) -> Optional[RawPage]:
        """
        Fetches and processes page 1. Returns it when there is more to do,
        None when the run is already decided (result filled in).
        """
        try:
            first_page = self.client.fetch_page(1, window, cancel_event=cancel_event)
        except SyncCancelled:
            self._cancelled(result)
            return None

        if first_page is None:
            result.success = False
            result.outcome = RunOutcome.FAILED
            result.message = "Could not reach the source API"
            return None

        if first_page.total_records == 0:
            result.success = True
            result.message = empty_message
            self._record_last_sync()
            return None

        logger.info(f"Total: {first_page.total_records} records in {first_page.total_pages} pages")
        result.total_pages = first_page.total_pages
        self.progress.set_total_pages(first_page.total_pages)
        result.add_page(self._handle_page(1, window, cancel_event, raw_page=first_page))
        return first_page

    def _handle_page(self, page: int, window: ValidityWindow, cancel_event: threading.Event,
                     raw_page: Optional[RawPage] = None) -> Optional[PageOutcome]:
        """
        Fetches (unless given) and processes one page. None means the page failed
        and was added to the failed set. SyncCancelled propagates.
        """
        if raw_page is None:
            raw_page = self.client.fetch_page(page, window, cancel_event=cancel_event)
        if raw_page is None:
            logger.warning(f"Page {page} skipped after failed attempts")
            self.progress.page_failed(page)
            return None

        try:
            outcome = self.processor.process_page(raw_page)
        except Exception:
            logger.exception(f"Error processing page {page}")
            self.progress.page_failed(page)
            return None

        self.progress.page_succeeded(outcome.processed)
        logger.info(f"Page {page} processed: {outcome.processed} items")
        return outcome

    def _parallel_worker(self, page: int, window: ValidityWindow, cancel_event: threading.Event,
                         slots: threading.BoundedSemaphore):
        try:
            return self._handle_page(page, window, cancel_event), False
        except SyncCancelled:
            return None, True
        except Exception:
            logger.exception(f"Worker for page {page} crashed")
            self.progress.page_failed(page)
            return None, False
        finally:
            slots.release()

    @staticmethod
    def _acquire_slot(slots: threading.BoundedSemaphore, cancel_event: threading.Event) -> bool:
        while not slots.acquire(timeout=0.1):
            if cancel_event.is_set():
                return False
        return True

    def _finish(self, result: SyncResult, cancel_event: threading.Event):
        if cancel_event.is_set():
            self._cancelled(result)
            return
        result.success = result.errors == 0
        if result.success:
            result.outcome = RunOutcome.COMPLETED
            result.message = (f"Synchronization finished: {result.items_processed} items processed "
                              f"({result.new_items} new)")
        else:
            result.outcome = RunOutcome.FAILED
            result.message = (f"Synchronization finished with {result.errors} error(s) in "
                              f"{self.progress.snapshot()['pages_failed']} page(s)")
        logger.info(result.message)

    @staticmethod
    def _cancelled(result: SyncResult):
        result.success = False
        result.outcome = RunOutcome.CANCELLED
        result.message = f"Synchronization cancelled. {result.items_processed} items processed before stopping."
        logger.warning(result.message)

    def _latest_validity_start(self) -> Optional[date]:
        db = self.session_factory()
        try:
            return db.query(func.max(PriceRegistration.data_vigencia_inicial)).scalar()
        finally:
            db.close()

    def _record_last_sync(self):
        db = self.session_factory()
        try:
            record_last_sync(db)
        except Exception:
            db.rollback()
            logger.exception("Could not record the last synchronization time")
        finally:
            db.close()
