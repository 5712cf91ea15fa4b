import time
import logging
import requests
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Type
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from threat_inspector.config import settings
from threat_inspector.core.attachment_analyzer import AttachmentAnalyzer
from threat_inspector.core.cache_manager import CacheManager
from threat_inspector.core.content_analyzer import ContentAnalyzer, sender_domain
from threat_inspector.core.dns_service import DNSService
from threat_inspector.core.email_parser import EmailParser
from threat_inspector.core.risk_scorer import RiskScorer
from threat_inspector.core.sender_analyzer import SenderAnalyzer
from threat_inspector.core.threat_intel import ThreatIntelligence
from threat_inspector.core.url_analyzer import UrlAnalyzer
from threat_inspector.models import AnalysisRecord
from threat_inspector.schemas import (
    AnalysisReport, DomainReport, EmailFacts, IpReputation, UrlResult
)

logger = logging.getLogger(__name__)


class AnalysisService:
    def __init__(self, db: Optional[Session] = None,
                 http_session: Optional[requests.Session] = None,
                 dns_service: Optional[DNSService] = None,
                 threat_intel: Optional[ThreatIntelligence] = None,
                 timeout: Optional[float] = None):
        """
        Per-email analysis pipeline.

        Args:
            db: Session for cache and history; without one both are skipped
            http_session: Shared session for DoH lookups and link expansion
            dns_service: Replaces the DoH resolver (tests)
            threat_intel: Replaces the pattern intelligence (tests)
            timeout: Whole-email deadline in seconds
        """
        self.db = db
        session = http_session or requests.Session()

        self.threat_intel = threat_intel or ThreatIntelligence(session=session)
        self.dns_service = dns_service or DNSService(session=session)

        self.email_parser = EmailParser()
        self.sender_analyzer = SenderAnalyzer(self.dns_service, self.threat_intel)
        self.url_analyzer = UrlAnalyzer(self.threat_intel)
        self.content_analyzer = ContentAnalyzer()
        self.attachment_analyzer = AttachmentAnalyzer()
        self.risk_scorer = RiskScorer()

        self.cache = CacheManager(db) if db is not None and settings.CACHE_ENABLED else None
        self.timeout = timeout or settings.ANALYSIS_TIMEOUT

    # ===== Email analysis =====

    def analyze_raw_email(self, raw_email: bytes) -> AnalysisReport:
        """
        Parse an .eml upload and analyze it

        Raises:
            EmailParseError: if the bytes are not an email
        """
        facts = self.email_parser.parse(raw_email)
        return self.analyze_email(facts)

    def analyze_email(self, facts: EmailFacts) -> AnalysisReport:
        """Complete email analysis; always returns a well-formed report"""
        cache_id = f"{facts.sender}{facts.subject}"
        cached = self._cache_get('email', cache_id, AnalysisReport)
        if cached is not None:
            logger.info(f"✓ Cached verdict for {facts.sender}")
            return cached.model_copy(update={'cached': True})

        start_time = time.time()

        try:
            report = self._run_analyzers(facts)
        except Exception as e:
            logger.error(f"❌ Analysis failed for {facts.sender}: {e}")
            return AnalysisReport(
                verdict=self.risk_scorer.default_verdict(f"Analysis error: {e}"),
                metadata=facts.metadata,
                error=str(e)
            )

        if report is None:
            logger.warning(f"⚠️ Analysis timed out after {self.timeout}s for {facts.sender}")
            return AnalysisReport(
                verdict=self.risk_scorer.default_verdict(f"Analysis timed out after {self.timeout}s"),
                metadata=facts.metadata,
                error='timeout'
            )

        processing_time = time.time() - start_time
        logger.info(
            f"✓ Analysis complete in {processing_time:.2f}s - "
            f"{report.verdict.level.value} ({report.verdict.score})"
        )

        self._cache_set('email', cache_id, report.model_dump(mode='json'))
        if settings.LOG_HISTORY:
            self._save_history(facts, report)

        return report

    def _run_analyzers(self, facts: EmailFacts) -> Optional[AnalysisReport]:
        """
        Run the four analyzers concurrently and score them.

        Returns None when the deadline passes; partial results are dropped.
        """
        executor = ThreadPoolExecutor(max_workers=4)
        try:
            futures = {
                'sender': executor.submit(self.sender_analyzer.analyze, facts),
                'urls': executor.submit(self.url_analyzer.analyze_urls, facts.urls),
                'content': executor.submit(self.content_analyzer.analyze, facts),
                'attachments': executor.submit(self.attachment_analyzer.analyze_attachments, facts.attachments),
            }

            _, not_done = wait(futures.values(), timeout=self.timeout)
            if not_done:
                return None

            results = {name: future.result() for name, future in futures.items()}
        finally:
            # Never block on a stuck lookup
            executor.shutdown(wait=False, cancel_futures=True)

        verdict = self.risk_scorer.calculate_threat_score(
            sender=results['sender'],
            urls=results['urls'],
            content=results['content'],
            attachments=results['attachments'],
            metadata=facts.metadata
        )

        return AnalysisReport(
            verdict=verdict,
            sender_analysis=results['sender'],
            url_analysis=results['urls'],
            content_analysis=results['content'],
            attachment_analysis=results['attachments'],
            metadata=facts.metadata
        )

    # ===== Single indicator lookups =====

    def analyze_url(self, url: str) -> UrlResult:
        cached = self._cache_get('url', url, UrlResult)
        if cached is not None:
            return cached

        result = self.url_analyzer.analyze_url(url)
        self._cache_set('url', url, result.model_dump(mode='json'))
        return result

    def check_domain_report(self, domain: str) -> DomainReport:
        domain = domain.lower().strip()
        cached = self._cache_get('domain', domain, DomainReport)
        if cached is not None:
            return cached

        report = DomainReport(
            domain=domain,
            check=self.threat_intel.check_domain(domain),
            info=self.threat_intel.get_domain_info(domain)
        )
        self._cache_set('domain', domain, report.model_dump(mode='json'))
        return report

    def check_ip(self, ip: str) -> IpReputation:
        """
        Pattern reputation plus reverse DNS

        Raises:
            ValueError: if ip is not a valid IPv4 address
        """
        cached = self._cache_get('ip', ip, IpReputation)
        if cached is not None:
            return cached

        reputation = self.threat_intel.check_ip(ip)
        result = reputation.model_copy(update={'reverse_dns': self.dns_service.reverse_dns(ip)})
        self._cache_set('ip', ip, result.model_dump(mode='json'))
        return result

    # ===== History =====

    def get_history(self, limit: int = 50) -> List[AnalysisRecord]:
        if self.db is None:
            return []
        return (
            self.db.query(AnalysisRecord)
            .order_by(AnalysisRecord.created_at.desc(), AnalysisRecord.id.desc())
            .limit(limit)
            .all()
        )

    def get_history_record(self, record_id: int) -> Optional[AnalysisRecord]:
        if self.db is None:
            return None
        return self.db.query(AnalysisRecord).filter(AnalysisRecord.id == record_id).first()

    def clear_history(self) -> int:
        if self.db is None:
            return 0
        try:
            deleted = self.db.query(AnalysisRecord).delete()
            self.db.commit()
            logger.info(f"✓ Cleared {deleted} history records")
            return deleted
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error clearing history: {e}")
            return 0

    def _save_history(self, facts: EmailFacts, report: AnalysisReport):
        if self.db is None:
            return

        try:
            self.db.add(AnalysisRecord(
                sender=facts.sender,
                sender_domain=sender_domain(facts.sender),
                subject=facts.subject,
                threat_score=report.verdict.score,
                threat_level=report.verdict.level.value,
                reasons=list(report.verdict.reasons)
            ))
            self.db.flush()

            # Keep only the newest HISTORY_LIMIT records
            stale_ids = [
                row.id for row in
                self.db.query(AnalysisRecord.id)
                .order_by(AnalysisRecord.created_at.desc(), AnalysisRecord.id.desc())
                .offset(settings.HISTORY_LIMIT)
                .all()
            ]
            if stale_ids:
                self.db.query(AnalysisRecord).filter(
                    AnalysisRecord.id.in_(stale_ids)
                ).delete(synchronize_session=False)

            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to save history: {e}")

    # ===== Cache =====

    def cache_stats(self) -> Dict:
        if self.cache is None:
            return {'total': 0, 'active': 0, 'expired': 0, 'by_type': {}}
        return self.cache.get_stats()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup() if self.cache is not None else 0

    def clear_cache(self) -> int:
        return self.cache.clear_all() if self.cache is not None else 0

    def _cache_get(self, cache_type: str, identifier: str, model: Type[BaseModel]) -> Optional[Any]:
        """Cached payload rebuilt as model; an unreadable entry is dropped and reads as a miss"""
        if self.cache is None:
            return None

        payload = self.cache.get(cache_type, identifier)
        if payload is None:
            return None

        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"⚠️ Discarding stale {cache_type} cache entry for {identifier}: {e.error_count()} errors")
            self.cache.clear(cache_type, identifier)
            return None

    def _cache_set(self, cache_type: str, identifier: str, data: Any):
        if self.cache is not None:
            self.cache.set(cache_type, identifier, data)
