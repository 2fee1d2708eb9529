from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_sessions(db: Session, *, now: Optional[datetime] = None) -> int:
	# Sessions whose last activity is older than the retention window are revoked
	now = now or datetime.utcnow()
	threshold = now - timedelta(days=settings.session_retention_days)
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	removed = res.rowcount or 0
	db.commit()
	if removed:
		logger.info("Purged %d stale sessions", removed)
	return removed
