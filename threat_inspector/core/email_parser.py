import re
import logging
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr
from typing import List, Optional, Tuple

import tldextract
from bs4 import BeautifulSoup

from threat_inspector.schemas import AttachmentFacts, EmailFacts, EmailMetadata

logger = logging.getLogger(__name__)

# Providers whose senders rarely carry a matching display name
NAME_MATCH_EXEMPT_PROVIDERS = {'gmail.com', 'outlook.com', 'yahoo.com', 'hotmail.com'}

STYLED_ELEMENTS_SELECTOR = '[style], b, i, strong, em, span, div'


class EmailParseError(ValueError):
    """Raised when bytes cannot be read as an RFC 822 message"""


class EmailParser:
    """
    Builds EmailFacts from a raw RFC 822 message (.eml).

    Text and HTML parts are both read; HTML is converted to text with
    BeautifulSoup and its <a href> targets are collected as URLs.
    """

    def __init__(self):
        self.url_pattern = re.compile(
            r'https?://[a-zA-Z0-9\-._~:/?#\[\]@!$&\'()*+,;=%]+',
            re.IGNORECASE
        )
        self.trailing_punctuation = re.compile(r'[.,;:)\]]+$')

        # Bundled public suffix snapshot, no download at runtime
        self.domain_extractor = tldextract.TLDExtract(suffix_list_urls=())

    def parse(self, raw_email: bytes) -> EmailFacts:
        """
        Parse raw email bytes

        Raises:
            EmailParseError: if the bytes carry no usable headers
        """
        try:
            msg = BytesParser(policy=policy.default).parsebytes(raw_email)
        except Exception as e:
            logger.error(f"❌ Failed to parse email: {e}")
            raise EmailParseError(str(e)) from e

        if not msg.keys():
            raise EmailParseError('No headers found')

        sender_name, sender = parseaddr(str(msg.get('from', '')))
        subject = str(msg.get('subject', '') or '')

        text_parts, html_parts = self._get_body_parts(msg)
        soups = [BeautifulSoup(html, 'lxml') for html in html_parts]

        body = '\n'.join(text_parts + [self._html_to_text(soup) for soup in soups]).strip()
        urls = self._extract_urls(body, soups)
        attachments = self._extract_attachments(msg)

        metadata = EmailMetadata(
            attachment_count=len(attachments),
            url_count=len(urls),
            body_length=len(body),
            subject_length=len(subject),
            sender_name_present=bool(sender_name.strip()),
            sender_name_matches_domain=self.name_matches_domain(sender_name, sender),
            has_html_formatting=sum(len(s.select(STYLED_ELEMENTS_SELECTOR)) for s in soups) > 5,
            image_count=sum(len(s.find_all('img')) for s in soups),
            recipient_count=self._count_recipients(msg),
            is_reply=subject.lower().startswith('re:'),
            is_forward=subject.lower().startswith('fwd:'),
            is_spam_folder=self._is_flagged_spam(msg),
        )

        logger.debug(f"Parsed email from {sender}: {len(urls)} URLs, {len(attachments)} attachments")

        return EmailFacts(
            sender=sender,
            sender_name=sender_name,
            subject=subject,
            body=body,
            urls=urls,
            attachments=attachments,
            metadata=metadata
        )

    def _get_body_parts(self, msg) -> Tuple[List[str], List[str]]:
        text_parts, html_parts = [], []

        for part in msg.walk():
            if part.is_multipart() or part.get_content_disposition() == 'attachment':
                continue

            content_type = part.get_content_type()
            try:
                if content_type == 'text/plain':
                    text_parts.append(part.get_content())
                elif content_type == 'text/html':
                    html_parts.append(part.get_content())
            except (LookupError, UnicodeDecodeError) as e:
                logger.warning(f"⚠️ Error extracting body part: {e}")

        return text_parts, html_parts

    @staticmethod
    def _html_to_text(soup: BeautifulSoup) -> str:
        text = soup.get_text(separator=' ')
        return re.sub(r'\s+', ' ', text).strip()

    def _extract_urls(self, text: str, soups: List[BeautifulSoup]) -> List[str]:
        """Link targets first, then URLs found in text, de-duplicated in order"""
        found = []
        for soup in soups:
            for link in soup.find_all('a', href=True):
                href = link['href'].strip()
                if href.lower().startswith('http'):
                    found.append(href)

        for match in self.url_pattern.findall(text):
            found.append(self.trailing_punctuation.sub('', match))

        seen = set()
        urls = []
        for url in found:
            if url not in seen:
                seen.add(url)
                urls.append(url)
        return urls

    def _extract_attachments(self, msg) -> List[AttachmentFacts]:
        attachments = []

        for part in msg.iter_attachments():
            filename = part.get_filename() or 'unnamed_attachment'
            try:
                payload = part.get_payload(decode=True) or b''
            except Exception as e:
                logger.warning(f"⚠️ Error reading attachment {filename}: {e}")
                payload = None

            attachments.append(AttachmentFacts(
                filename=filename,
                size=self.format_size(len(payload)) if payload is not None else 'Unknown',
                extension=filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
            ))

        return attachments

    @staticmethod
    def _count_recipients(msg) -> int:
        fields = [str(v) for v in (msg.get_all('to') or []) + (msg.get_all('cc') or [])]
        return len([addr for _, addr in getaddresses(fields) if addr])

    @staticmethod
    def _is_flagged_spam(msg) -> bool:
        spam_flag = str(msg.get('x-spam-flag', '')).strip().lower()
        spam_status = str(msg.get('x-spam-status', '')).strip().lower()
        return spam_flag == 'yes' or spam_status.startswith('yes')

    def name_matches_domain(self, name: str, email_address: str) -> bool:
        """
        Whether a display name plausibly belongs to the sender domain.
        Major providers always match.
        """
        if not name or '@' not in (email_address or ''):
            return False

        domain = email_address.rsplit('@', 1)[1].lower()
        name_lower = name.lower().strip()

        if domain in NAME_MATCH_EXEMPT_PROVIDERS:
            return True

        if name_lower in domain or domain in name_lower:
            return True

        # "PayPal Support" <service@paypal.com>
        registered = self.domain_extractor(domain).domain
        return bool(registered) and registered in name_lower.replace(' ', '')

    @staticmethod
    def format_size(size: int) -> str:
        if size < 1024:
            return f"{size} B"
        size_kb = size / 1024
        if size_kb < 1024:
            return f"{size_kb:.1f} KB"
        return f"{size_kb / 1024:.1f} MB"
