import logging
from typing import Callable, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from atas.etl.client import RawPage
from atas.etl.reconciler import DuplicateAgreement, RecordReconciler

logger = logging.getLogger(__name__)


class PageOutcome(NamedTuple):
    processed: int = 0
    new_agreements: int = 0
    new_line_items: int = 0
    new_descriptions: int = 0


class PageProcessor:
    """
    Runs every record of a page through the reconciler, one transaction per
    record, inside a session owned by this page.
    """

    def __init__(self, session_factory: Callable[[], Session], reconciler: Optional[RecordReconciler] = None):
        self.session_factory = session_factory
        self.reconciler = reconciler or RecordReconciler()

    def process_page(self, raw_page: RawPage) -> PageOutcome:
        processed = new_agreements = new_line_items = new_descriptions = 0

        db = self.session_factory()
        try:
            for record in raw_page.records:
                processed += 1
                try:
                    outcome = self.reconciler.reconcile(db, record)
                    db.commit()
                except (IntegrityError, DuplicateAgreement) as e:
                    # another worker stored the same key first
                    db.rollback()
                    logger.debug(f"Duplicate on page {raw_page.number}: {e}")
                    continue
                except Exception:
                    db.rollback()
                    logger.exception(f"Failed to process a record on page {raw_page.number}")
                    continue

                new_agreements += outcome.new_agreement
                new_line_items += outcome.new_line_item
                new_descriptions += outcome.new_description
        finally:
            db.close()

        return PageOutcome(processed, new_agreements, new_line_items, new_descriptions)
