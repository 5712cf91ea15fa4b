import pytest
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from threat_inspector.database import Base, init_db
from threat_inspector.core.threat_intel import ThreatIntelligence
from threat_inspector.schemas import (
    AttachmentFacts, AuthStatus, EmailFacts, EmailMetadata, MXRecord
)


class FakeDNSService:
    """Stands in for the DoH resolver with fixed answers"""

    def __init__(self, spf=AuthStatus.PASS, dmarc=AuthStatus.PASS, mx=None, ptr=None):
        self.spf = spf
        self.dmarc = dmarc
        self.mx = mx if mx is not None else [MXRecord(exchange='mx.example.com.', priority=10)]
        self.ptr = ptr
        self.calls = []

    def check_spf(self, domain):
        self.calls.append(('spf', domain))
        return self.spf

    def check_dmarc(self, domain):
        self.calls.append(('dmarc', domain))
        return self.dmarc

    def get_mx_records(self, domain):
        self.calls.append(('mx', domain))
        return self.mx

    def reverse_dns(self, ip):
        self.calls.append(('ptr', ip))
        return self.ptr


@pytest.fixture
def fake_dns():
    return FakeDNSService


@pytest.fixture
def http_session():
    """requests.Session double; any HEAD just echoes the URL back"""
    session = MagicMock()
    session.head.side_effect = lambda url, **kwargs: MagicMock(url=url)
    return session


@pytest.fixture
def threat_intel(http_session):
    return ThreatIntelligence(session=http_session)


@pytest.fixture
def make_facts():
    def _make(sender='alice@example.com', sender_name='Alice', subject='Lunch on Friday',
              body='Hi, are we still on for lunch on Friday? Let me know what time works for you.',
              urls=None, attachments=None, **metadata):
        urls = list(urls or [])
        attachments = [
            a if isinstance(a, AttachmentFacts)
            else AttachmentFacts(filename=a, extension=a.rsplit('.', 1)[-1].lower() if '.' in a else '')
            for a in (attachments or [])
        ]
        fields = {
            'attachment_count': len(attachments),
            'url_count': len(urls),
            'body_length': len(body),
            'subject_length': len(subject),
            'sender_name_present': bool(sender_name),
            'sender_name_matches_domain': True,
            'recipient_count': 1,
        }
        fields.update(metadata)
        return EmailFacts(
            sender=sender,
            sender_name=sender_name,
            subject=subject,
            body=body,
            urls=urls,
            attachments=attachments,
            metadata=EmailMetadata(**fields)
        )
    return _make


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
