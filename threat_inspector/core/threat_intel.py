import re
import json
import logging
import ipaddress
import requests
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

from threat_inspector.config import settings
from threat_inspector.schemas import DomainCheck, DomainInfo, IpReputation

logger = logging.getLogger(__name__)

# Shared by the URL analyzer for expansion decisions and the static pattern check
SHORT_URL_PATTERN = re.compile(r'\b(?:bit\.ly|tinyurl|goo\.gl|ow\.ly|t\.co|short\.link)\b', re.IGNORECASE)
IP_HOST_PATTERN = re.compile(r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}')

SUSPICIOUS_TLDS = (
    '.tk', '.ml', '.ga', '.cf', '.gq', '.top', '.xyz',
    '.club', '.work', '.info', '.click', '.country'
)

SUSPICIOUS_NAME_PATTERNS = ('-secure', '-login', '-verify', '-account', 'update-', 'support-')

NEW_DOMAIN_PATTERN = re.compile(r'\d{4}|temp|test|fake', re.IGNORECASE)
MARKETING_PATTERN = re.compile(r'free|bonus|promo|deal|giveaway', re.IGNORECASE)

MAJOR_EMAIL_PROVIDERS = {
    'gmail.com', 'googlemail.com', 'outlook.com', 'hotmail.com',
    'live.com', 'yahoo.com', 'icloud.com'
}

TLD_COUNTRY_MAP = {
    # Common country-code TLDs
    'us': 'United States', 'uk': 'United Kingdom', 'de': 'Germany',
    'fr': 'France', 'es': 'Spain', 'it': 'Italy', 'nl': 'Netherlands',
    'be': 'Belgium', 'se': 'Sweden', 'no': 'Norway', 'dk': 'Denmark',
    'fi': 'Finland', 'pl': 'Poland', 'ru': 'Russia', 'br': 'Brazil',
    'ca': 'Canada', 'au': 'Australia', 'nz': 'New Zealand', 'in': 'India',
    'jp': 'Japan', 'cn': 'China', 'kr': 'South Korea', 'mx': 'Mexico',
    'ch': 'Switzerland', 'at': 'Austria', 'ie': 'Ireland', 'pt': 'Portugal',
    'tr': 'Türkiye', 'za': 'South Africa', 'sg': 'Singapore',
    'hk': 'Hong Kong', 'tw': 'Taiwan',
    # Notable special cases
    'ai': 'Anguilla (".ai" hosting)',
    'io': 'British Indian Ocean Territory (".io" hosting)',
    # Generic TLDs
    'com': 'Generic (US-based services often use .com)',
    'net': 'Generic (US-based services often use .net)',
    'org': 'Generic (US-based services often use .org)',
}

LOCAL_ONLY = 'Not available (local analysis only)'


class ThreatIntelligence:
    def __init__(self, session: Optional[requests.Session] = None,
                 blacklist_path: Optional[str] = None):
        """
        Pattern-based threat intelligence: no reputation APIs, only static
        tables, an optional local blacklist and short-link expansion.

        Args:
            session: HTTP session used for short-link expansion
            blacklist_path: JSON file with a "bad_domains" list
        """
        self.http_session = session or requests.Session()
        self.http_session.headers.update({'User-Agent': settings.USER_AGENT})
        self.expand_timeout = settings.URL_EXPAND_TIMEOUT

        # Load blacklist once at startup to avoid repeated disk reads
        self.bad_domains = self._load_local_blacklist(blacklist_path or settings.BLACKLIST_PATH)

        self.dangerous_url_patterns = [
            SHORT_URL_PATTERN,
            re.compile(r'bit\.do', re.IGNORECASE),
            re.compile(r'tny\.im', re.IGNORECASE),
            re.compile(r'goo\.gl/[^/]{6,}', re.IGNORECASE),
        ]

    def _load_local_blacklist(self, path: Optional[str]) -> set:
        """
        Load local domain blacklist

        Returns:
            Set of known malicious domains (empty when no file is configured)
        """
        if not path:
            return set()

        file_path = Path(path)
        if not file_path.exists():
            logger.warning(f"⚠️ Blacklist file not found: {file_path}")
            return set()

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            domains = {d.lower().strip() for d in data.get('bad_domains', []) if d}
            logger.info(f"✓ Loaded {len(domains)} domains from: {file_path}")
            return domains

        except json.JSONDecodeError as e:
            logger.error(f"❌ JSON decode error in blacklist: {e}")
        except IOError as e:
            logger.error(f"❌ IO error loading blacklist: {e}")
        return set()

    # ===== URL checks =====

    def check_url(self, url: str) -> Dict:
        """
        Static dangerous-pattern match: short-link services, IP-literal
        hosts and risky TLDs.

        Returns:
            {'safe': bool, 'reason': str}
        """
        hostname = (urlparse(url).hostname or '').lower()

        for pattern in self.dangerous_url_patterns:
            if pattern.search(url):
                return {'safe': False, 'reason': 'Suspicious URL pattern detected'}

        if IP_HOST_PATTERN.search(hostname) or hostname.endswith(SUSPICIOUS_TLDS):
            return {'safe': False, 'reason': 'Suspicious URL pattern detected'}

        return {'safe': True, 'reason': None}

    def expand_url(self, short_url: str) -> str:
        """Follow redirects with a HEAD request; the original URL on any failure"""
        try:
            response = self.http_session.head(
                short_url,
                allow_redirects=True,
                timeout=self.expand_timeout
            )
            return response.url or short_url

        except requests.RequestException as e:
            logger.warning(f"⚠️ Short URL expansion failed for {short_url}: {e}")
            return short_url

    # ===== Domain checks =====

    def check_domain(self, domain: str) -> DomainCheck:
        """Stateless naming heuristics on a domain string"""
        lowered = (domain or '').lower()

        has_suspicious_tld = lowered.endswith(SUSPICIOUS_TLDS)
        is_short = len(lowered) < 5
        too_many_subdomains = len(lowered.split('.')) > 4
        has_suspicious_name = any(p in lowered for p in SUSPICIOUS_NAME_PATTERNS)

        reasons = []
        if has_suspicious_tld:
            reasons.append('Suspicious TLD')
        if is_short:
            reasons.append('Very short domain')
        if too_many_subdomains:
            reasons.append('Too many subdomains')
        if has_suspicious_name:
            reasons.append('Suspicious domain naming (e.g. login/secure)')

        return DomainCheck(suspicious=bool(reasons), reasons=reasons)

    def get_domain_info(self, domain: str) -> DomainInfo:
        """Age/branding estimate and country from the TLD, no WHOIS"""
        lowered = (domain or '').lower().strip()
        tld = lowered.split('.')[-1] if lowered else ''
        country = TLD_COUNTRY_MAP.get(tld, 'Unknown')

        if lowered in MAJOR_EMAIL_PROVIDERS:
            return DomainInfo(
                age='Established provider (age not checked locally)',
                registrar='Major email provider (local analysis only)',
                country=country,
                blacklisted=False,
                suspicious=False
            )

        is_likely_new = bool(NEW_DOMAIN_PATTERN.search(lowered))
        has_aggressive_branding = bool(MARKETING_PATTERN.search(lowered))
        blacklisted = lowered in self.bad_domains

        return DomainInfo(
            age='Likely new domain' if is_likely_new else LOCAL_ONLY,
            registrar=LOCAL_ONLY,
            country=country,
            blacklisted=blacklisted,
            suspicious=is_likely_new or has_aggressive_branding or blacklisted
        )

    # ===== IP checks =====

    def check_ip(self, ip: str) -> IpReputation:
        """
        Pattern-based IP reputation

        Raises:
            ValueError: if ip is not a valid IPv4 address
        """
        ipaddress.IPv4Address(ip)
        reputation = 'private' if self.is_private_ip(ip) else 'unknown'
        return IpReputation(ip=ip, reputation=reputation, score=50)

    @staticmethod
    def is_private_ip(ip: str) -> bool:
        parts = [int(p) for p in ip.split('.')]
        return (
            parts[0] == 10 or
            (parts[0] == 172 and 16 <= parts[1] <= 31) or
            (parts[0] == 192 and parts[1] == 168) or
            parts[0] == 127
        )
