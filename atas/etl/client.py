import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, wait as wait_futures
from dataclasses import dataclass, field
from datetime import date
from functools import wraps
from typing import Callable, Optional

import requests

from atas.config import (
    SOURCE_ATTEMPT_TIMEOUT, SOURCE_BASE_URL, SOURCE_MAX_ATTEMPTS, SOURCE_PAGE_SIZE,
    SOURCE_RETRY_WAIT, SOURCE_UNIT_CODE, SYNC_MAX_CONCURRENCY_LIMIT,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

ARP_ITEMS_PATH = '/modulo-arp/2_consultarARPItem'


class SyncCancelled(Exception):
    """The caller asked the running sync to stop."""


class AttemptTimeout(Exception):
    def __init__(self, future=None):
        super().__init__("attempt timed out")
        self.future = future


@dataclass(frozen=True)
class ValidityWindow:
    start: date = date(2000, 1, 1)
    end: date = date(2050, 1, 1)

    def params(self) -> dict:
        return {
            'dataVigenciaInicialMin': self.start.isoformat(),
            'dataVigenciaInicialMax': self.end.isoformat(),
        }


FULL_WINDOW = ValidityWindow()


@dataclass
class RawPage:
    number: int
    total_pages: int
    total_records: int
    records: list = field(default_factory=list)

    @classmethod
    def from_payload(cls, number: int, payload: dict) -> "RawPage":
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected payload type {type(payload).__name__} for page {number}")
        try:
            total_pages = int(payload['totalPaginas'])
            total_records = int(payload['totalRegistros'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed envelope for page {number}: {e}") from e
        return cls(number=number, total_pages=total_pages, total_records=total_records,
                   records=payload.get('resultado') or [])


class RetryPolicy:
    """
    Wraps a fetch so that each attempt gets a hard timeout and failed attempts
    are retried after a fixed wait. Returns None once attempts are exhausted.

    The wrapped function accepts an extra ``cancel_event`` keyword; when the
    event is set the wrapper raises SyncCancelled instead of retrying.
    """

    def __init__(self, max_attempts: int = 3, attempt_timeout: float = 45.0, retry_wait: float = 5.0,
                 poll_interval: float = 0.25, max_workers: int = SYNC_MAX_CONCURRENCY_LIMIT):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout
        self.retry_wait = retry_wait
        self.poll_interval = poll_interval
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='source-fetch')

    def __call__(self, func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, cancel_event: Optional[threading.Event] = None, **kwargs):
            label = kwargs.get('label') or getattr(func, '__name__', 'fetch')
            for attempt in range(1, self.max_attempts + 1):
                self._check_cancelled(cancel_event)
                try:
                    return self._run_attempt(func, args, kwargs, cancel_event)
                except SyncCancelled:
                    raise
                except AttemptTimeout as e:
                    logger.warning(f"Timeout on attempt {attempt}/{self.max_attempts} for {label}")
                    # never two requests in flight for the same fetch
                    self._settle(e.future, cancel_event)
                except requests.exceptions.RequestException as e:
                    logger.warning(f"HTTP error on attempt {attempt}/{self.max_attempts} for {label}: {e}")
                except Exception as e:
                    logger.warning(f"Attempt {attempt}/{self.max_attempts} for {label} failed: {e}")

                if attempt < self.max_attempts:
                    logger.info(f"Waiting {self.retry_wait}s before retrying {label}...")
                    self._wait(cancel_event)

            logger.error(f"Giving up on {label} after {self.max_attempts} attempts")
            return None

        return wrapper

    def _run_attempt(self, func, args, kwargs, cancel_event):
        started = {}

        def attempt():
            started['at'] = time.monotonic()
            return func(*args, **kwargs)

        future = self._executor.submit(attempt)
        while True:
            # the clock runs from the moment a worker picks the attempt up
            wait = self.poll_interval
            if 'at' in started:
                remaining = started['at'] + self.attempt_timeout - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    raise AttemptTimeout(future)
                wait = min(wait, remaining)
            try:
                return future.result(timeout=wait)
            except FuturesTimeout:
                if cancel_event is not None and cancel_event.is_set():
                    future.cancel()
                    raise SyncCancelled()

    def _settle(self, future, cancel_event):
        """Blocks until an abandoned attempt has returned, or the run is cancelled."""
        if future is None:
            return
        while not wait_futures([future], timeout=self.poll_interval).done:
            self._check_cancelled(cancel_event)

    def _wait(self, cancel_event):
        if cancel_event is None:
            time.sleep(self.retry_wait)
        elif cancel_event.wait(self.retry_wait):
            raise SyncCancelled()

    @staticmethod
    def _check_cancelled(cancel_event):
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled()

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)


class ComprasClient:
    """
    Client for the dadosabertos.compras.gov.br price-registration items endpoint.
    """

    def __init__(self, base_url: str = SOURCE_BASE_URL, unit_code: str = SOURCE_UNIT_CODE,
                 page_size: int = SOURCE_PAGE_SIZE, retry_policy: Optional[RetryPolicy] = None,
                 transport_timeout: tuple = (10, 60)):
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'AtasSync/1.0',
            'Accept': 'application/json',
        })
        self.base_url = base_url.rstrip('/')
        self.unit_code = unit_code
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=SOURCE_MAX_ATTEMPTS,
            attempt_timeout=SOURCE_ATTEMPT_TIMEOUT,
            retry_wait=SOURCE_RETRY_WAIT,
        )
        # a request must not outlive the attempt that issued it
        limit = self.retry_policy.attempt_timeout
        self.transport_timeout = tuple(min(t, limit) for t in transport_timeout)
        self._fetch = self.retry_policy(self.get_page)

    def get_page(self, page: int, window: ValidityWindow = FULL_WINDOW, label: Optional[str] = None) -> RawPage:
        """Single attempt, no retries. Raises on any failure."""
        params = {
            'pagina': page,
            'tamanhoPagina': self.page_size,
            'codigoUnidadeGerenciadora': self.unit_code,
            **window.params(),
        }
        logger.info(f"Fetching page {page}...")
        response = self.session.get(f'{self.base_url}{ARP_ITEMS_PATH}', params=params,
                                    timeout=self.transport_timeout)
        response.raise_for_status()
        raw_page = RawPage.from_payload(page, response.json())
        logger.info(f"Page {page} received ({len(raw_page.records)} records)")
        return raw_page

    def fetch_page(self, page: int, window: ValidityWindow = FULL_WINDOW,
                   cancel_event: Optional[threading.Event] = None) -> Optional[RawPage]:
        """
        Fetches one page with the retry policy. None means every attempt failed;
        SyncCancelled propagates as soon as cancel_event is set.
        """
        return self._fetch(page, window, label=f"page {page}", cancel_event=cancel_event)

    def close(self):
        self.session.close()
        self.retry_policy.shutdown()
