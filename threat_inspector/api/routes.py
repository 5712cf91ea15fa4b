import logging
from fastapi import APIRouter, UploadFile, File, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List

from threat_inspector.database import get_db
from threat_inspector.core.email_parser import EmailParseError
from threat_inspector.schemas import (
    AnalysisReport, CacheStats, DomainReport, EmailFacts, HistoryEntry,
    IpReputation, UrlRequest, UrlResult
)
from threat_inspector.services.analysis_service import AnalysisService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_analysis_service(db: Session = Depends(get_db)) -> AnalysisService:
    return AnalysisService(db)

# ============================================================================
# ANALYSIS ENDPOINTS
# ============================================================================

@router.post("/analyze", response_model=AnalysisReport)
async def analyze_email_file(
    file: UploadFile = File(...),
    service: AnalysisService = Depends(get_analysis_service)
):
    """Analyze an uploaded email file (.eml format)"""
    raw_email = await file.read()
    if not raw_email:
        raise HTTPException(status_code=400, detail="Empty upload")

    try:
        # DoH and link expansion block; keep them off the event loop
        return await run_in_threadpool(service.analyze_raw_email, raw_email)
    except EmailParseError as e:
        logger.warning(f"⚠️ Unparseable upload {file.filename}: {e}")
        raise HTTPException(status_code=400, detail=f"Could not parse email: {e}")


@router.post("/analyze-email", response_model=AnalysisReport)
def analyze_email_facts(facts: EmailFacts, service: AnalysisService = Depends(get_analysis_service)):
    """Analyze already-extracted email facts"""
    return service.analyze_email(facts)


@router.post("/analyze-url", response_model=UrlResult)
def analyze_url(request: UrlRequest, service: AnalysisService = Depends(get_analysis_service)):
    url = request.url.strip()
    if not url.lower().startswith(('http://', 'https://')):
        raise HTTPException(status_code=400, detail="URL must start with http:// or https://")
    return service.analyze_url(url)

# ============================================================================
# INDICATOR LOOKUPS
# ============================================================================

@router.get("/domain/{domain}", response_model=DomainReport)
def check_domain(domain: str, service: AnalysisService = Depends(get_analysis_service)):
    if '.' not in domain or ' ' in domain:
        raise HTTPException(status_code=400, detail="Invalid domain")
    return service.check_domain_report(domain)


@router.get("/ip/{ip}", response_model=IpReputation)
def check_ip(ip: str, service: AnalysisService = Depends(get_analysis_service)):
    try:
        return service.check_ip(ip)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid IPv4 address")

# ============================================================================
# HISTORY ENDPOINTS
# ============================================================================

@router.get("/history", response_model=List[HistoryEntry])
def list_history(limit: int = 50, service: AnalysisService = Depends(get_analysis_service)):
    return service.get_history(limit=max(1, min(limit, 100)))


@router.get("/history/{record_id}", response_model=HistoryEntry)
def get_history_record(record_id: int, service: AnalysisService = Depends(get_analysis_service)):
    record = service.get_history_record(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="History record not found")
    return record


@router.delete("/history")
def clear_history(service: AnalysisService = Depends(get_analysis_service)):
    deleted = service.clear_history()
    return {"status": "success", "deleted": deleted}

# ============================================================================
# CACHE MAINTENANCE
# ============================================================================

@router.get("/cache/stats", response_model=CacheStats)
def cache_stats(service: AnalysisService = Depends(get_analysis_service)):
    return service.cache_stats()


@router.post("/cache/cleanup")
def cleanup_cache(service: AnalysisService = Depends(get_analysis_service)):
    removed = service.cleanup_cache()
    return {"status": "success", "removed": removed}


@router.delete("/cache")
def clear_cache(service: AnalysisService = Depends(get_analysis_service)):
    deleted = service.clear_cache()
    return {"status": "success", "deleted": deleted}


@router.get("/health")
def health_check():
    return {"status": "healthy"}
