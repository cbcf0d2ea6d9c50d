import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from vibe_assistant.core.errors import InvalidTargetError
from vibe_assistant.schemas.analysis import (
    AnalysisRecord,
    HistoryEntry,
    InsightsRecord,
    ScoreComparison,
)
from vibe_assistant.schemas.cache import CacheStatus
from vibe_assistant.services.history import HistoryLedger
from vibe_assistant.services.orchestrator import AnalysisOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


# Dependency for AnalysisOrchestrator, built once in the app lifespan
def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    return request.app.state.orchestrator


class AnalyzeRequest(BaseModel):
    repo_url: str
    force: bool = False  # If True, bypass cache and force re-analysis


class AnalyzeResponse(BaseModel):
    status: str  # cached | success | partial | failed
    repo_url: str
    analysis: Optional[AnalysisRecord] = None
    insights: Optional[InsightsRecord] = None
    # Per-branch failures, e.g. {"insights": {"kind": "rate_limited", "message": "..."}}
    errors: Dict[str, Dict[str, Any]] = {}
    from_cache: bool = False
    comparison: Optional[ScoreComparison] = None


@router.post("", response_model=AnalyzeResponse)
async def analyze_repository(
    request: AnalyzeRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Analyze a GitHub repository and generate insights.

    Cached results are reused (analysis for 1 hour, insights for 30 minutes)
    unless ``force`` is set. If one of the two fails, the other is still
    returned with status "partial".
    """
    logger.debug(f"[ANALYZE] Request data: repo_url={request.repo_url}, force={request.force}")

    try:
        result = await orchestrator.complete_analysis(request.repo_url, force_refresh=request.force)
    except InvalidTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))

    errors = {}
    if result.analysis_error is not None:
        errors["analysis"] = result.analysis_error.to_dict()
    if result.insights_error is not None:
        errors["insights"] = result.insights_error.to_dict()

    comparison = None
    if result.previous_analysis is not None and result.analysis is not None:
        comparison = HistoryLedger.compare(result.previous_analysis, result.analysis)

    return AnalyzeResponse(
        status=result.status,
        repo_url=result.target,
        analysis=result.analysis,
        insights=result.insights,
        errors=errors,
        from_cache=result.from_cache,
        comparison=comparison,
    )


@router.delete("/cache")
async def clear_analysis_cache(
    repo_url: str = Query(..., description="Repository URL or GitHub login to clear from cache"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Clear cached analysis, insights and history for a repository, along
    with its owner's repository listing. A bare login clears only the listing.

    Useful to force a fresh analysis without waiting for the cache to expire.
    """
    try:
        removed = orchestrator.invalidate(repo_url)
    except InvalidTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if removed:
        return {"status": "success", "message": f"Cache cleared for {repo_url}"}
    return {"status": "success", "message": f"No cache entry found for {repo_url}"}


@router.get("/status", response_model=CacheStatus)
async def get_cache_status(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    return orchestrator.cache_status()


@router.get("/history", response_model=List[HistoryEntry])
async def get_history(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    """Recent analyses, newest first."""
    return orchestrator.history()


@router.delete("/history/{entry_id}")
async def delete_history_entry(
    entry_id: str,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    if not orchestrator.history_ledger.remove(entry_id):
        raise HTTPException(status_code=404, detail="History entry not found")
    return {"status": "success"}
