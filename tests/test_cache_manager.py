import pytest
from datetime import timedelta

from threat_inspector.core.cache_manager import CacheManager
from threat_inspector.models import AnalysisCache


class TestCacheManager:
    @pytest.fixture(autouse=True)
    def setup_cache(self, db_session):
        self.db = db_session
        self.cache = CacheManager(db_session)

    def stored(self, key):
        return self.db.query(AnalysisCache).filter_by(cache_key=key).one()

    @pytest.mark.parametrize('cache_type, hours', [
        ('domain', 24),
        ('ip', 12),
        ('url', 6),
        ('email', 1),
        ('whois', 1),
    ])
    def test_expiry_per_type(self, cache_type, hours):
        assert self.cache.get_ttl(cache_type) == timedelta(hours=hours)

        self.cache.set(cache_type, 'example.com', {'ok': True})

        entry = self.stored(f'{cache_type}:example.com')
        assert entry.cache_type == cache_type
        assert entry.expires_at - entry.created_at == timedelta(hours=hours)

    def test_explicit_ttl_overrides_type_default(self):
        self.cache.set('domain', 'example.com', {'ok': True}, ttl=timedelta(minutes=5))

        entry = self.stored('domain:example.com')
        assert entry.expires_at - entry.created_at == timedelta(minutes=5)

    def test_get_returns_payload_until_expired(self):
        self.cache.set('url', 'https://example.com/', {'risk_score': 0})
        self.cache.set('url', 'https://old.example.com/', {'risk_score': 0}, ttl=timedelta(seconds=-1))

        assert self.cache.get('url', 'https://example.com/') == {'risk_score': 0}
        assert self.cache.get('url', 'https://old.example.com/') is None
        assert self.cache.get('url', 'https://never-seen.example.com/') is None

    def test_set_overwrites_existing_key(self):
        self.cache.set('ip', '203.0.113.7', {'score': 50}, ttl=timedelta(seconds=-1))
        self.cache.set('ip', '203.0.113.7', {'score': 60})

        assert self.cache.get('ip', '203.0.113.7') == {'score': 60}
        assert self.db.query(AnalysisCache).count() == 1

    def test_cleanup_removes_only_expired_entries(self):
        self.cache.set('domain', 'fresh.example.com', {'ok': True})
        self.cache.set('domain', 'stale.example.com', {'ok': True}, ttl=timedelta(seconds=-1))
        self.cache.set('ip', '203.0.113.7', {'ok': True}, ttl=timedelta(seconds=-1))

        assert self.cache.get_stats() == {
            'total': 3,
            'active': 1,
            'expired': 2,
            'by_type': {'domain': 2, 'ip': 1},
        }

        assert self.cache.cleanup() == 2

        assert self.cache.get_stats() == {
            'total': 1,
            'active': 1,
            'expired': 0,
            'by_type': {'domain': 1},
        }
        assert self.cache.get('domain', 'fresh.example.com') == {'ok': True}

    def test_clear_and_clear_all(self):
        self.cache.set('url', 'https://a.example.com/', {'n': 1})
        self.cache.set('url', 'https://b.example.com/', {'n': 2})

        self.cache.clear('url', 'https://a.example.com/')
        assert self.cache.get('url', 'https://a.example.com/') is None

        assert self.cache.clear_all() == 1
        assert self.cache.get_stats()['total'] == 0
