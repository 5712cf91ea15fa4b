import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from threat_inspector.core.content_analyzer import sender_domain
from threat_inspector.core.dns_service import DNSService
from threat_inspector.core.threat_intel import ThreatIntelligence
from threat_inspector.schemas import (
    AuthStatus, DomainInfo, EmailFacts, SenderReputation, SenderResult
)

logger = logging.getLogger(__name__)


class SenderAnalyzer:
    """
    Sender trust: SPF, DMARC, MX and domain heuristics for the sender
    domain, looked up concurrently. DKIM is never verified.
    """

    def __init__(self, dns_service: Optional[DNSService] = None,
                 threat_intel: Optional[ThreatIntelligence] = None):
        self.dns_service = dns_service or DNSService()
        self.threat_intel = threat_intel or ThreatIntelligence()

    def analyze(self, facts: EmailFacts) -> SenderResult:
        domain = sender_domain(facts.sender)
        sender_risks = self.get_sender_risks(facts)

        if domain == 'unknown':
            # Nothing to look up; report the least trusting state
            logger.warning(f"⚠️ No sender domain in '{facts.sender}'")
            return SenderResult(
                email=facts.sender,
                domain=domain,
                spf=AuthStatus.FAIL,
                dmarc=AuthStatus.FAIL,
                reputation=self.calculate_reputation(AuthStatus.FAIL, AuthStatus.FAIL, DomainInfo()),
                sender_risks=sender_risks
            )

        with ThreadPoolExecutor(max_workers=4) as executor:
            spf_future = executor.submit(self.dns_service.check_spf, domain)
            dmarc_future = executor.submit(self.dns_service.check_dmarc, domain)
            mx_future = executor.submit(self.dns_service.get_mx_records, domain)
            info_future = executor.submit(self.threat_intel.get_domain_info, domain)

        spf = self._auth_result(spf_future, 'SPF', domain)
        dmarc = self._auth_result(dmarc_future, 'DMARC', domain)

        try:
            mx_records = mx_future.result()
        except Exception as e:
            logger.error(f"❌ MX lookup raised for {domain}: {e}")
            mx_records = []

        try:
            domain_info = info_future.result()
        except Exception as e:
            logger.error(f"❌ Domain info failed for {domain}: {e}")
            domain_info = DomainInfo()

        return SenderResult(
            email=facts.sender,
            domain=domain,
            spf=spf,
            dkim=AuthStatus.NOT_CHECKED,
            dmarc=dmarc,
            mx_records=mx_records,
            domain_info=domain_info,
            reputation=self.calculate_reputation(spf, dmarc, domain_info),
            sender_risks=sender_risks
        )

    @staticmethod
    def _auth_result(future, name: str, domain: str) -> AuthStatus:
        try:
            return future.result()
        except Exception as e:
            logger.error(f"❌ {name} check raised for {domain}: {e}")
            return AuthStatus.ERROR

    @staticmethod
    def calculate_reputation(spf: AuthStatus, dmarc: AuthStatus,
                             domain_info: DomainInfo) -> SenderReputation:
        score = 0
        if spf == AuthStatus.PASS:
            score += 33
        if dmarc == AuthStatus.PASS:
            score += 33
        if not domain_info.suspicious:
            score += 34

        if score >= 66:
            return SenderReputation.GOOD
        if score >= 33:
            return SenderReputation.MODERATE
        return SenderReputation.POOR

    @staticmethod
    def get_sender_risks(facts: EmailFacts) -> list:
        metadata = facts.metadata
        risks = []
        if not metadata.sender_name_present:
            risks.append('No sender display name')
        if metadata.sender_name_present and not metadata.sender_name_matches_domain:
            risks.append('Sender name does not match domain')
        if metadata.is_bcc:
            risks.append("Email was BCC'd (unusual)")
        return risks
