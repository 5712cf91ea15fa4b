from enum import Enum
from pydantic import BaseModel, Field, computed_field
from typing import Optional, List, Dict
from datetime import datetime

# ==========================================
# 🧱 ENUMERATIONS
# ==========================================

class AuthStatus(str, Enum):
    PASS = "pass"
    NEUTRAL = "neutral"
    FAIL = "fail"
    ERROR = "error"
    NOT_CHECKED = "not_checked"

class ThreatLevel(str, Enum):
    SAFE = "SAFE"
    SUSPICIOUS = "SUSPICIOUS"
    DANGEROUS = "DANGEROUS"

class SocialEngineering(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"

class SenderReputation(str, Enum):
    GOOD = "Good"
    MODERATE = "Moderate"
    POOR = "Poor"
    UNKNOWN = "Unknown"


class FrozenModel(BaseModel):
    """Immutable value object shared by every engine input and output"""

    class Config:
        frozen = True

# ==========================================
# 📥 INPUT MODELS
# ==========================================

class EmailMetadata(FrozenModel):
    attachment_count: int = 0
    url_count: int = 0
    body_length: int = 0
    subject_length: int = 0
    sender_name_present: bool = False
    sender_name_matches_domain: bool = False
    has_html_formatting: bool = False
    image_count: int = 0
    recipient_count: int = 0
    is_reply: bool = False
    is_forward: bool = False
    is_spam_folder: bool = False
    is_bcc: bool = False

class AttachmentFacts(FrozenModel):
    filename: str = ""
    size: str = "Unknown"
    extension: str = ""

class EmailFacts(FrozenModel):
    sender: str = ""
    sender_name: str = ""
    subject: str = ""
    body: str = ""
    urls: List[str] = []
    attachments: List[AttachmentFacts] = []
    metadata: EmailMetadata = EmailMetadata()

class UrlRequest(BaseModel):
    url: str

# ==========================================
# 🔬 ANALYZER RESULTS
# ==========================================

class DomainInfo(FrozenModel):
    age: str = "Unknown"
    registrar: str = "Not available (local analysis only)"
    country: str = "Unknown"
    blacklisted: bool = False
    suspicious: bool = False

class DomainCheck(FrozenModel):
    suspicious: bool = False
    reasons: List[str] = []

class MXRecord(FrozenModel):
    exchange: str
    priority: int = 0

class IpReputation(FrozenModel):
    ip: str
    reputation: str = "unknown"
    score: int = 50
    reverse_dns: Optional[str] = None

class UrlResult(FrozenModel):
    url: str
    resolved_url: str
    risk_score: int = Field(default=0, ge=0, le=100)
    dangerous: bool = False
    flags: List[str] = []
    redirects: Optional[str] = None

class UrlAnalysis(FrozenModel):
    urls: List[UrlResult] = []
    dangerous_urls: List[str] = []
    dangerous_count: int = 0

class AttachmentResult(FrozenModel):
    filename: str
    extension: str
    dangerous: bool = False
    # Raw per-attachment score; stacking can push it past 100
    risk_score: int = 0
    flags: List[str] = []

    @computed_field
    @property
    def display_score(self) -> int:
        return max(0, min(100, self.risk_score))

class AttachmentAnalysis(FrozenModel):
    attachments: List[AttachmentResult] = []
    dangerous_count: int = 0

class ContentResult(FrozenModel):
    phishing_score: int = Field(default=0, ge=0, le=100)
    social_engineering: SocialEngineering = SocialEngineering.LOW
    impersonation: bool = False
    short_body_with_links: bool = False
    flags: List[str] = []

class SenderResult(FrozenModel):
    email: str = ""
    domain: str = "unknown"
    spf: AuthStatus = AuthStatus.FAIL
    dkim: AuthStatus = AuthStatus.NOT_CHECKED
    dmarc: AuthStatus = AuthStatus.FAIL
    mx_records: List[MXRecord] = []
    domain_info: DomainInfo = DomainInfo()
    reputation: SenderReputation = SenderReputation.UNKNOWN
    sender_risks: List[str] = []

# ==========================================
# 📤 RESPONSE MODELS
# ==========================================

class ThreatVerdict(FrozenModel):
    score: int = Field(ge=0, le=100)
    level: ThreatLevel
    recommendation: str
    reasons: List[str] = Field(default_factory=list, max_length=5)

class AnalysisReport(FrozenModel):
    """Verdict plus the four analyzer sub-results, ready for a display layer"""
    verdict: ThreatVerdict
    sender_analysis: Optional[SenderResult] = None
    url_analysis: Optional[UrlAnalysis] = None
    content_analysis: Optional[ContentResult] = None
    attachment_analysis: Optional[AttachmentAnalysis] = None
    metadata: Optional[EmailMetadata] = None
    error: Optional[str] = None
    cached: bool = False

class DomainReport(BaseModel):
    domain: str
    check: DomainCheck
    info: DomainInfo

class HistoryEntry(BaseModel):
    id: int
    sender: Optional[str] = None
    subject: Optional[str] = None
    threat_score: int
    threat_level: ThreatLevel
    reasons: List[str] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class CacheStats(BaseModel):
    total: int = 0
    active: int = 0
    expired: int = 0
    by_type: Dict[str, int] = {}
