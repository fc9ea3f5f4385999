# modman/core/time.py
from __future__ import annotations

from datetime import datetime, timezone

__all__ = ["utcNow", "backupStamp"]



def utcNow() -> datetime:
    return datetime.now(timezone.utc)



def backupStamp(moment: datetime | None = None) -> str:
    """Timestamp used in backup directory names: yyyyMMddHHmmss (UTC)."""
    return (moment or utcNow()).strftime("%Y%m%d%H%M%S")
