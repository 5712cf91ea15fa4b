import time
import pytest
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import MagicMock

from threat_inspector.config import settings
from threat_inspector.core.cache_manager import CacheManager
from threat_inspector.core.email_parser import EmailParseError
from threat_inspector.models import AnalysisCache, AnalysisRecord
from threat_inspector.schemas import AuthStatus, ThreatLevel, UrlResult
from threat_inspector.services.analysis_service import AnalysisService


class SlowDNS:
    def __init__(self, delay):
        self.delay = delay

    def check_spf(self, domain):
        time.sleep(self.delay)
        return AuthStatus.PASS

    def check_dmarc(self, domain):
        return AuthStatus.PASS

    def get_mx_records(self, domain):
        return []


@pytest.fixture
def service_factory(http_session, threat_intel, fake_dns):
    def _make(db=None, dns=None, **kwargs):
        return AnalysisService(
            db=db,
            http_session=http_session,
            dns_service=dns or fake_dns(),
            threat_intel=threat_intel,
            **kwargs
        )
    return _make


class TestEmailScenarios:
    def test_benign_authenticated_email_is_safe(self, service_factory, make_facts):
        report = service_factory().analyze_email(make_facts())

        assert report.verdict.level == ThreatLevel.SAFE
        assert report.verdict.score == 0
        assert report.verdict.reasons == []
        assert report.error is None
        assert report.sender_analysis.dkim == AuthStatus.NOT_CHECKED

    def test_failed_authentication_only(self, service_factory, fake_dns, make_facts):
        service = service_factory(dns=fake_dns(spf=AuthStatus.FAIL, dmarc=AuthStatus.FAIL))

        report = service.analyze_email(make_facts())

        assert report.verdict.score == 16
        assert report.verdict.level == ThreatLevel.SAFE
        assert report.verdict.reasons == ['Sender authentication failed']

    def test_short_body_with_dangerous_link(self, service_factory, make_facts):
        body = 'Hello, see this: http://203.0.113.7/file'
        assert len(body) == 40
        facts = make_facts(subject='Shared file', body=body, urls=['http://203.0.113.7/file'])

        report = service_factory().analyze_email(facts)

        assert report.content_analysis.short_body_with_links is True
        assert report.content_analysis.phishing_score >= 40
        assert report.url_analysis.dangerous_count == 1
        assert report.verdict.score == 75
        assert report.verdict.level == ThreatLevel.DANGEROUS

    def test_double_extension_attachment(self, service_factory, make_facts):
        report = service_factory().analyze_email(make_facts(attachments=['invoice.pdf.exe']))

        attachment = report.attachment_analysis.attachments[0]
        assert attachment.risk_score == 130
        assert report.attachment_analysis.dangerous_count == 1
        assert report.verdict.score == 36
        assert report.verdict.reasons == ['1 dangerous attachment(s)']

    def test_brand_mention_from_brand_domain(self, service_factory, make_facts):
        report = service_factory().analyze_email(
            make_facts(sender='service@paypal.com', subject='Your paypal receipt')
        )

        assert report.content_analysis.impersonation is False
        assert report.verdict.level == ThreatLevel.SAFE

    def test_brand_mention_from_lookalike_domain(self, service_factory, make_facts):
        report = service_factory().analyze_email(
            make_facts(sender='service@paypa1-security.info', subject='Your paypal receipt')
        )

        assert report.content_analysis.impersonation is True
        assert report.verdict.score == 60
        assert 'Impersonation attempt detected' in report.verdict.reasons

    def test_spam_folder_never_lowers_score(self, service_factory, make_facts):
        service = service_factory()
        facts = dict(subject='Shared file', body='Hello, see this: http://203.0.113.7/file',
                     urls=['http://203.0.113.7/file'])

        inbox = service.analyze_email(make_facts(**facts))
        spam = service.analyze_email(make_facts(is_spam_folder=True, **facts))

        assert spam.verdict.score >= inbox.verdict.score
        assert spam.verdict.reasons[-1] == 'Email is in Spam folder'

    def test_identical_inputs_identical_reports(self, service_factory, make_facts):
        facts = make_facts(urls=['https://bit.ly/x1', 'http://203.0.113.7/a'], attachments=['a.docm'])

        first = service_factory().analyze_email(facts)
        second = service_factory().analyze_email(facts)

        assert first.model_dump_json() == second.model_dump_json()


class TestDegradedAnalysis:
    def test_unexpected_exception_gives_default_verdict(self, service_factory, make_facts):
        service = service_factory()
        service.content_analyzer = MagicMock()
        service.content_analyzer.analyze.side_effect = RuntimeError('boom')

        report = service.analyze_email(make_facts())

        assert report.verdict.score == 50
        assert report.verdict.level == ThreatLevel.SUSPICIOUS
        assert report.verdict.recommendation == 'Analysis incomplete - exercise caution'
        assert report.verdict.reasons == ['Analysis error: boom']
        assert report.error == 'boom'
        assert report.sender_analysis is None

    def test_deadline_gives_default_verdict(self, service_factory, make_facts):
        service = service_factory(dns=SlowDNS(delay=1.0), timeout=0.1)

        report = service.analyze_email(make_facts())

        assert report.verdict.score == 50
        assert report.verdict.reasons == ['Analysis timed out after 0.1s']
        assert report.url_analysis is None
        assert report.content_analysis is None

    def test_degraded_reports_are_not_recorded(self, service_factory, db_session, make_facts):
        service = service_factory(db=db_session, dns=SlowDNS(delay=1.0), timeout=0.1)

        service.analyze_email(make_facts())

        assert db_session.query(AnalysisRecord).count() == 0
        assert db_session.query(AnalysisCache).count() == 0


class TestRawEmail:
    def test_eml_bytes_end_to_end(self, service_factory):
        msg = MIMEMultipart()
        msg['From'] = 'PayPal <service@paypa1-security.info>'
        msg['To'] = 'you@example.com'
        msg['Subject'] = 'Your paypal account is suspended'
        msg.attach(MIMEText('Verify your account now: http://203.0.113.9/login', 'plain'))

        report = service_factory().analyze_raw_email(msg.as_bytes())

        assert report.verdict.level == ThreatLevel.DANGEROUS
        assert report.sender_analysis.domain == 'paypa1-security.info'
        assert report.url_analysis.dangerous_urls == ['http://203.0.113.9/login']

    def test_unparseable_bytes_raise(self, service_factory):
        with pytest.raises(EmailParseError):
            service_factory().analyze_raw_email(b'')


class TestCacheAndHistory:
    def test_second_analysis_is_served_from_cache(self, service_factory, db_session, make_facts):
        service = service_factory(db=db_session)
        facts = make_facts(attachments=['invoice.pdf.exe'])

        first = service.analyze_email(facts)
        second = service.analyze_email(facts)

        assert first.cached is False
        assert second.cached is True
        assert second.verdict == first.verdict
        assert second.attachment_analysis.attachments[0].risk_score == 130
        assert db_session.query(AnalysisRecord).count() == 1

    def test_history_is_pruned_to_limit(self, service_factory, db_session, make_facts, monkeypatch):
        monkeypatch.setattr(settings, 'HISTORY_LIMIT', 3)
        service = service_factory(db=db_session)

        for i in range(5):
            service.analyze_email(make_facts(subject=f'Status report {i}'))

        history = service.get_history()
        assert [h.subject for h in history] == ['Status report 4', 'Status report 3', 'Status report 2']

    def test_history_record_fields_and_clear(self, service_factory, db_session, fake_dns, make_facts):
        service = service_factory(db=db_session, dns=fake_dns(spf=AuthStatus.FAIL, dmarc=AuthStatus.FAIL))
        service.analyze_email(make_facts(sender='bob@example.org'))

        record = service.get_history()[0]
        assert record.sender == 'bob@example.org'
        assert record.sender_domain == 'example.org'
        assert record.threat_score == 16
        assert record.threat_level == 'SAFE'
        assert record.reasons == ['Sender authentication failed']
        assert service.get_history_record(record.id).id == record.id

        assert service.clear_history() == 1
        assert service.get_history() == []

    def test_url_domain_and_ip_lookups_are_cached(self, service_factory, db_session, fake_dns):
        service = service_factory(db=db_session, dns=fake_dns(ptr='host.example.net.'))

        url_result = service.analyze_url('http://203.0.113.7/login')
        domain_report = service.check_domain_report('Paypal-Secure.TK')
        ip_result = service.check_ip('203.0.113.7')

        assert url_result.dangerous is True
        assert domain_report.domain == 'paypal-secure.tk'
        assert domain_report.check.suspicious is True
        assert ip_result.reputation == 'unknown'
        assert ip_result.reverse_dns == 'host.example.net.'

        stats = service.cache_stats()
        assert stats['active'] == 3
        assert stats['by_type'] == {'url': 1, 'domain': 1, 'ip': 1}

        # Served from cache without another PTR lookup
        assert service.check_ip('203.0.113.7') == ip_result
        assert service.dns_service.calls.count(('ptr', '203.0.113.7')) == 1

    def test_invalid_ip_raises(self, service_factory):
        with pytest.raises(ValueError):
            service_factory().check_ip('not-an-ip')

    def test_without_database_cache_and_history_are_skipped(self, service_factory, make_facts):
        service = service_factory()

        service.analyze_email(make_facts())

        assert service.get_history() == []
        assert service.cache_stats() == {'total': 0, 'active': 0, 'expired': 0, 'by_type': {}}
        assert service.clear_cache() == 0


class TestStaleCacheEntries:
    def test_unreadable_email_entry_is_replaced_by_fresh_analysis(self, service_factory, db_session, make_facts):
        service = service_factory(db=db_session)
        facts = make_facts()
        CacheManager(db_session).set('email', f"{facts.sender}{facts.subject}", {'score': 10})

        report = service.analyze_email(facts)

        assert report.cached is False
        assert report.verdict.level == ThreatLevel.SAFE
        assert report.error is None
        # The stale row was overwritten with the new report
        assert service.analyze_email(facts).cached is True

    def test_unreadable_lookup_entries_read_as_misses(self, service_factory, db_session, fake_dns):
        service = service_factory(db=db_session, dns=fake_dns(ptr='host.example.net.'))
        cache = CacheManager(db_session)
        cache.set('url', 'http://203.0.113.7/login', {'dangerous': 'maybe'})
        cache.set('domain', 'paypal-secure.tk', ['not', 'a', 'report'])
        cache.set('ip', '203.0.113.7', {'score': 'high'})

        assert service.analyze_url('http://203.0.113.7/login').dangerous is True
        assert service.check_domain_report('paypal-secure.tk').check.suspicious is True
        assert service.check_ip('203.0.113.7').reverse_dns == 'host.example.net.'

        assert UrlResult.model_validate(cache.get('url', 'http://203.0.113.7/login')).risk_score == 80
