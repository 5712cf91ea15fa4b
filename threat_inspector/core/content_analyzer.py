import re
import logging
from typing import List, NamedTuple, Pattern

from threat_inspector.schemas import ContentResult, EmailFacts, SocialEngineering

logger = logging.getLogger(__name__)


class ContentPattern(NamedTuple):
    regex: Pattern
    weight: int
    flag: str


# Tested in order; every match adds its weight
CONTENT_PATTERNS: List[ContentPattern] = [
    ContentPattern(re.compile(r"urgent|immediately|act now|limited time", re.I), 15, 'Urgency manipulation'),
    ContentPattern(re.compile(r"verify your account|confirm your identity", re.I), 20, 'Account verification phishing'),
    ContentPattern(re.compile(r"suspended|locked|restricted|terminated", re.I), 18, 'Fear-based manipulation'),
    ContentPattern(re.compile(r"click here|click below", re.I), 10, 'Action pressure'),
    ContentPattern(re.compile(r"congratulations|you've won|prize|lottery", re.I), 15, 'Prize scam'),
    ContentPattern(re.compile(r"password|credential|authentication", re.I), 20, 'Credential harvesting'),
    ContentPattern(re.compile(r"bank|credit card|payment|billing", re.I), 15, 'Financial information request'),
    ContentPattern(re.compile(r"dear (customer|user|member)", re.I), 10, 'Generic greeting'),
    ContentPattern(re.compile(r"invoice|payment due|outstanding (invoice|balance)|past due", re.I), 15,
                   'Invoice or payment pressure'),
    ContentPattern(re.compile(r"(bitcoin|crypto|usdt|ethereum|wallet)", re.I), 20, 'Cryptocurrency-related request'),
    ContentPattern(re.compile(r"(gift card|itunes card|google play card|steam card)", re.I), 20,
                   'Gift card scam indicators'),
    ContentPattern(re.compile(r"(wire transfer|swift|iban|routing number)", re.I), 20, 'Wire transfer request'),
    ContentPattern(re.compile(r"(unusual|suspicious) (sign[- ]?in|login)", re.I), 18, 'Unusual login security alert'),
    ContentPattern(re.compile(r"(mailbox|storage).*(full|almost full|quota)", re.I), 15, 'Mailbox quota phishing'),
]

IMPERSONATED_BRANDS = [
    'paypal', 'amazon', 'apple', 'microsoft', 'google', 'bank', 'netflix',
    'facebook', 'instagram', 'whatsapp', 'uber', 'dhl', 'fedex'
]

IMPERSONATION_WEIGHT = 30
SHORT_BODY_LENGTH = 80
SHORT_BODY_FLOOR = 40


def sender_domain(sender: str) -> str:
    """Lower-cased domain part of an address, "unknown" when there is none"""
    if '@' not in (sender or ''):
        return 'unknown'
    domain = sender.rsplit('@', 1)[1].strip().strip('>').lower()
    return domain or 'unknown'


class ContentAnalyzer:
    """Weighted phishing-pattern scan of subject + body plus metadata signals"""

    def __init__(self, patterns: List[ContentPattern] = None, brands: List[str] = None):
        self.patterns = patterns if patterns is not None else CONTENT_PATTERNS
        self.brands = brands if brands is not None else IMPERSONATED_BRANDS

    def analyze(self, facts: EmailFacts) -> ContentResult:
        text = f"{facts.subject} {facts.body}".lower()
        metadata = facts.metadata
        short_body_with_links = metadata.body_length < SHORT_BODY_LENGTH and metadata.url_count > 0

        phishing_score = 0
        flags = []

        for pattern in self.patterns:
            if pattern.regex.search(text):
                phishing_score += pattern.weight
                flags.append(pattern.flag)

        # Only the first brand mentioned is compared with the sender
        mentioned_brand = next((b for b in self.brands if b in text), None)
        impersonation = False
        if mentioned_brand and mentioned_brand not in sender_domain(facts.sender):
            impersonation = True
            phishing_score += IMPERSONATION_WEIGHT
            flags.append(f"Impersonation: Mentions {mentioned_brand}")

        if metadata.attachment_count > 3:
            phishing_score += 5
            flags.append('Multiple attachments (unusual)')
        if metadata.url_count > 5:
            phishing_score += 10
            flags.append('Many embedded links (suspicious)')
        if short_body_with_links:
            phishing_score += 15
            flags.append('Very short body with links (suspicious)')
        if not metadata.is_reply and not metadata.is_forward and metadata.recipient_count > 10:
            phishing_score += 5
            flags.append('Sent to many recipients')
        if metadata.image_count > 5:
            phishing_score += 5
            flags.append('Many images in email')

        if short_body_with_links and phishing_score < SHORT_BODY_FLOOR:
            phishing_score = SHORT_BODY_FLOOR

        phishing_score = max(0, min(100, phishing_score))

        if phishing_score >= 40:
            social_engineering = SocialEngineering.HIGH
        elif phishing_score >= 20:
            social_engineering = SocialEngineering.MODERATE
        else:
            social_engineering = SocialEngineering.LOW

        logger.debug(f"Content score {phishing_score} ({social_engineering.value}), {len(flags)} flags")

        return ContentResult(
            phishing_score=phishing_score,
            social_engineering=social_engineering,
            impersonation=impersonation,
            short_body_with_links=short_body_with_links,
            flags=flags
        )
