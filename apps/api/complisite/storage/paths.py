"""
Object key conventions for the storage buckets.

    evidence/checklist-evidence/<item_id>-<epoch_ms>.<ext>    checklist evidence
    evidence/<project_id>/<YYYY>/<MM>/<DD>/<epoch_ms>_<name>  site photos
    certificates/<user_id>/<epoch_ms>_<name>                  worker certificates
"""

import uuid
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

from complisite.core.errors import ValidationFailed


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def clean_filename(filename: str) -> str:
    """Drop any directory part so a client cannot choose the folder."""
    name = PurePosixPath(filename.replace("\\", "/")).name.strip()
    if not name or name in (".", ".."):
        raise ValidationFailed("File name is empty")
    return name


def evidence_key(filename: str, prefix: str = "checklist-evidence") -> str:
    return f"{prefix}/{filename}"


def checklist_evidence_path(
    item_id: uuid.UUID,
    filename: str,
    prefix: str = "checklist-evidence",
    now: Optional[datetime] = None,
) -> str:
    suffix = PurePosixPath(clean_filename(filename)).suffix
    return evidence_key(f"{item_id}-{epoch_ms(_now(now))}{suffix}", prefix)


def site_photo_path(project_id: uuid.UUID, filename: str, now: Optional[datetime] = None) -> str:
    moment = _now(now)
    return (
        f"{project_id}/{moment:%Y}/{moment:%m}/{moment:%d}/"
        f"{epoch_ms(moment)}_{clean_filename(filename)}"
    )


def certificate_path(user_id: uuid.UUID, filename: str, now: Optional[datetime] = None) -> str:
    return f"{user_id}/{epoch_ms(_now(now))}_{clean_filename(filename)}"

