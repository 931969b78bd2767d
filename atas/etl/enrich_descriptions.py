import logging
from sqlalchemy.orm import Session
from atas.db.session import SessionLocal
from atas.db.models import CatalogItem, ItemDescription

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def backfill_primary_descriptions(db: Session) -> int:
    """
    Items stored without a primary description take the first variant recorded for them.
    """
    missing = db.query(CatalogItem).filter(CatalogItem.descricao_principal.is_(None)).all()
    logger.info(f"Found {len(missing)} items without a primary description.")

    fixed = 0
    for item in missing:
        first = db.query(ItemDescription.descricao_item).filter(
            ItemDescription.codigo_item == item.codigo_item
        ).order_by(ItemDescription.id).first()
        if first and first[0]:
            item.descricao_principal = first[0]
            fixed += 1

    db.commit()
    logger.info(f"Backfill complete. Fixed {fixed} items.")
    return fixed


if __name__ == "__main__":
    db_session = SessionLocal()
    try:
        backfill_primary_descriptions(db_session)
    finally:
        db_session.close()
