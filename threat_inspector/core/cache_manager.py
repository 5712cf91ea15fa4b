import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from threat_inspector.config import settings
from threat_inspector.models import AnalysisCache

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Expiring key-value store for analysis results.

    Keys look like "<type>:<identifier>" and every type has its own expiry
    (domain 24h, ip 12h, url 6h, email 1h, anything else 1h). The engine
    never depends on a hit; errors are logged and treated as a miss.
    """

    def __init__(self, db: Session, ttl_hours: Optional[Dict[str, int]] = None):
        self.db = db
        self.ttl_hours = dict(ttl_hours or settings.CACHE_TTL_HOURS)
        self.default_ttl_hours = settings.CACHE_DEFAULT_TTL_HOURS

    @staticmethod
    def generate_key(cache_type: str, identifier: str) -> str:
        return f"{cache_type}:{identifier}"

    def get_ttl(self, cache_type: str) -> timedelta:
        return timedelta(hours=self.ttl_hours.get(cache_type, self.default_ttl_hours))

    def get(self, cache_type: str, identifier: str) -> Optional[Any]:
        """
        Retrieve cached data if present and not expired

        Args:
            cache_type: Entry type ('domain', 'ip', 'url', 'email', ...)
            identifier: Domain, URL, etc.

        Returns:
            Cached payload or None if not found/expired
        """
        key = self.generate_key(cache_type, identifier)
        try:
            cached = self.db.query(AnalysisCache).filter_by(cache_key=key).first()

            if cached and cached.expires_at > datetime.utcnow():
                logger.debug(f"Cache hit: {key}")
                return cached.payload
        except SQLAlchemyError as e:
            logger.error(f"❌ Cache retrieval error: {e}")

        return None

    def set(self, cache_type: str, identifier: str, data: Any,
            ttl: Optional[timedelta] = None):
        """
        Store a payload under "<type>:<identifier>"

        Args:
            cache_type: Entry type, selects the default expiry
            identifier: Domain, URL, etc.
            data: JSON-serializable payload
            ttl: Optional explicit expiry overriding the per-type one
        """
        key = self.generate_key(cache_type, identifier)
        now = datetime.utcnow()
        expires_at = now + (ttl if ttl is not None else self.get_ttl(cache_type))

        try:
            existing = self.db.query(AnalysisCache).filter_by(cache_key=key).first()

            if existing:
                existing.payload = data
                existing.expires_at = expires_at
                existing.created_at = now
            else:
                self.db.add(AnalysisCache(
                    cache_key=key,
                    cache_type=cache_type,
                    payload=data,
                    expires_at=expires_at,
                    created_at=now
                ))

            self.db.commit()
            logger.debug(f"Cache set: {key}")

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Database error saving cache: {e}")

    def clear(self, cache_type: str, identifier: str):
        """Clear one cache entry"""
        key = self.generate_key(cache_type, identifier)
        try:
            self.db.query(AnalysisCache).filter_by(cache_key=key).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error clearing cache entry {key}: {e}")

    def clear_all(self) -> int:
        """Drop every cache entry"""
        try:
            deleted = self.db.query(AnalysisCache).delete()
            self.db.commit()
            logger.info(f"✓ Cleared {deleted} cache entries")
            return deleted
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error clearing cache: {e}")
            return 0

    def cleanup(self) -> int:
        """Clear expired cache entries (maintenance task)"""
        try:
            deleted = self.db.query(AnalysisCache).filter(
                AnalysisCache.expires_at <= datetime.utcnow()
            ).delete()

            self.db.commit()
            if deleted:
                logger.info(f"✓ Cache cleanup: removed {deleted} expired entries")
            return deleted

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error cleaning cache: {e}")
            return 0

    def get_stats(self) -> Dict:
        """Get cache statistics"""
        stats = {'total': 0, 'active': 0, 'expired': 0, 'by_type': {}}
        now = datetime.utcnow()

        try:
            for entry in self.db.query(AnalysisCache).all():
                stats['total'] += 1
                stats['by_type'][entry.cache_type] = stats['by_type'].get(entry.cache_type, 0) + 1

                if entry.expires_at <= now:
                    stats['expired'] += 1
                else:
                    stats['active'] += 1
        except SQLAlchemyError as e:
            logger.error(f"❌ Error getting cache stats: {e}")

        return stats
