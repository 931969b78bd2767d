from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from atas.db.models import SystemSetting, utcnow

LAST_SYNC_KEY = "last_sync"


def get_setting(db: Session, key: str) -> Optional[str]:
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    return setting.value if setting else None


def put_setting(db: Session, key: str, value: str, description: Optional[str] = None) -> SystemSetting:
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if not setting:
        setting = SystemSetting(key=key, value=value, description=description)
        db.add(setting)
    else:
        setting.value = value
        setting.updated_at = utcnow()
    db.commit()
    return setting


def record_last_sync(db: Session, when: Optional[datetime] = None) -> datetime:
    when = when or datetime.now(timezone.utc)
    put_setting(db, LAST_SYNC_KEY, when.isoformat(), "Date/time of the last synchronization")
    return when


def get_last_sync(db: Session) -> Optional[datetime]:
    value = get_setting(db, LAST_SYNC_KEY)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
