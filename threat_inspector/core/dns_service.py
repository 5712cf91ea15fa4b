import re
import logging
import requests
from typing import Dict, List, Optional

from threat_inspector.config import settings
from threat_inspector.schemas import AuthStatus, MXRecord

logger = logging.getLogger(__name__)

DMARC_POLICY_PATTERN = re.compile(r'(?:^|;)\s*p\s*=\s*([^;\s]+)', re.IGNORECASE)
MX_DATA_PATTERN = re.compile(r'^\s*(\d+)\s+(\S+)\s*$')


class DNSService:
    """
    Domain trust lookups over DNS-over-HTTPS.

    Every public check is fail-closed: a lookup that cannot be completed
    reports FAIL (SPF/DMARC) or no records (MX), never a more trusting state.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 providers: Optional[List[str]] = None,
                 timeout: Optional[int] = None):
        self.providers = list(providers or settings.DOH_PROVIDERS)
        self.timeout = timeout or settings.DNS_TIMEOUT

        # Reuse TCP connections across lookups
        self.http_session = session or requests.Session()
        # Accept is sent per request; the session may be shared with link expansion
        self.http_session.headers.update({'User-Agent': settings.USER_AGENT})

    def resolve(self, domain: str, record_type: str = 'A') -> List[Dict]:
        """
        Resolve DNS records via DNS-over-HTTPS

        Args:
            domain: Name to query
            record_type: DNS record type ('A', 'TXT', 'MX', 'PTR', ...)

        Returns:
            The "Answer" array, or [] when nothing could be resolved
        """
        for provider in self.providers:
            try:
                response = self.http_session.get(
                    provider,
                    params={'name': domain, 'type': record_type},
                    headers={'Accept': 'application/dns-json'},
                    timeout=self.timeout
                )

                if not response.ok:
                    logger.warning(f"⚠️ DoH {provider} returned {response.status_code} for {domain} ({record_type})")
                    continue

                answers = response.json().get('Answer') or []
                return [a for a in answers if isinstance(a, dict)]

            except requests.RequestException as e:
                logger.warning(f"⚠️ DNS resolution failed for {domain} ({record_type}) via {provider}: {e}")
            except ValueError as e:
                logger.warning(f"⚠️ Invalid DoH response for {domain} ({record_type}) via {provider}: {e}")

        return []

    def check_spf(self, domain: str) -> AuthStatus:
        """SPF record present with a ~all/-all qualifier"""
        try:
            records = self.resolve(domain, 'TXT')
            spf_record = next(
                (r['data'] for r in records if 'v=spf1' in str(r.get('data', ''))),
                None
            )

            if spf_record is None:
                return AuthStatus.FAIL

            if '~all' in spf_record or '-all' in spf_record:
                return AuthStatus.PASS
            return AuthStatus.NEUTRAL

        except Exception as e:
            logger.error(f"❌ SPF check failed for {domain}: {e}")
            return AuthStatus.FAIL

    def check_dmarc(self, domain: str) -> AuthStatus:
        """DMARC record with an enforcing (reject/quarantine) policy"""
        try:
            records = self.resolve(f"_dmarc.{domain}", 'TXT')
            dmarc_record = next(
                (r['data'] for r in records if 'v=DMARC1' in str(r.get('data', ''))),
                None
            )

            if dmarc_record is None:
                return AuthStatus.FAIL

            policy_match = DMARC_POLICY_PATTERN.search(dmarc_record.strip('"'))
            policy = policy_match.group(1).strip('"').lower() if policy_match else 'none'

            if policy in ('reject', 'quarantine'):
                return AuthStatus.PASS
            return AuthStatus.NEUTRAL

        except Exception as e:
            logger.error(f"❌ DMARC check failed for {domain}: {e}")
            return AuthStatus.FAIL

    def get_mx_records(self, domain: str) -> List[MXRecord]:
        """MX records sorted by ascending priority; [] on failure"""
        try:
            records = []
            for answer in self.resolve(domain, 'MX'):
                data = str(answer.get('data', '')).strip()
                priority = answer.get('priority')
                exchange = data

                # Cloudflare/Google put "10 mx.example.com." in data
                match = MX_DATA_PATTERN.match(data)
                if match:
                    exchange = match.group(2)
                    if priority is None:
                        priority = int(match.group(1))

                records.append(MXRecord(exchange=exchange, priority=int(priority or 0)))

            return sorted(records, key=lambda r: r.priority)

        except Exception as e:
            logger.error(f"❌ MX lookup failed for {domain}: {e}")
            return []

    def reverse_dns(self, ip: str) -> Optional[str]:
        """PTR lookup for an IPv4 address"""
        try:
            reversed_ip = '.'.join(reversed(ip.split('.')))
            records = self.resolve(f"{reversed_ip}.in-addr.arpa", 'PTR')
            return records[0].get('data') if records else None
        except Exception as e:
            logger.error(f"❌ Reverse DNS failed for {ip}: {e}")
            return None
