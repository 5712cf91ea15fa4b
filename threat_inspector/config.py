from pydantic_settings import BaseSettings
from typing import Dict, List, Optional

class Settings(BaseSettings):
    # API Configuration
    APP_NAME: str = "Email Threat Inspector"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Cache + history storage
    DATABASE_URL: str = "sqlite:///./threat_inspector.db"

    # DNS-over-HTTPS providers, tried in order
    DOH_PROVIDERS: List[str] = [
        "https://cloudflare-dns.com/dns-query",
        "https://dns.google/resolve",
    ]
    DNS_TIMEOUT: int = 5
    URL_EXPAND_TIMEOUT: int = 5
    USER_AGENT: str = "EmailThreatInspector/1.0"

    # Analysis Settings
    ANALYSIS_TIMEOUT: int = 30
    MAX_URLS_PER_EMAIL: int = 10
    MAX_WORKERS: int = 8

    # Optional local blacklist: {"bad_domains": [...]}
    BLACKLIST_PATH: Optional[str] = None

    # Cache expiry per entry type
    CACHE_ENABLED: bool = True
    CACHE_TTL_HOURS: Dict[str, int] = {
        "domain": 24,
        "ip": 12,
        "url": 6,
        "email": 1,
    }
    CACHE_DEFAULT_TTL_HOURS: int = 1

    # History
    LOG_HISTORY: bool = True
    HISTORY_LIMIT: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
