"""Repository listing endpoints, paged the way the UI shows them."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from vibe_assistant.core.errors import CollaboratorError, InvalidTargetError, http_status_for
from vibe_assistant.schemas.repository import RepositoryPage
from vibe_assistant.services.pagination import PaginationReconciler
from vibe_assistant.utils.url_helpers import normalize_github_username

logger = logging.getLogger(__name__)

router = APIRouter()


def get_reconciler(request: Request) -> PaginationReconciler:
    return request.app.state.reconciler


@router.get("/{username}/repos", response_model=RepositoryPage)
async def get_user_repositories(
    username: str,
    page: int = Query(1, ge=1, description="1-based UI page"),
    force: bool = Query(False, description="Refetch from GitHub even if cached"),
    reconciler: PaginationReconciler = Depends(get_reconciler),
) -> RepositoryPage:
    """
    Get one page of a user's repositories, most recently updated first.

    GitHub is asked for 30 repositories at a time; subsequent UI pages are
    served from the stored listing until it goes stale.
    """
    try:
        subject = normalize_github_username(username)
        repositories = await reconciler.fetch_page(subject, page, force_refresh=force)
    except CollaboratorError as e:
        logger.warning(f"Listing failed for {username} page {page}: {e.message}")
        raise HTTPException(status_code=http_status_for(e), detail=e.to_dict())
    except ValueError as e:
        # InvalidTargetError included
        raise HTTPException(status_code=400, detail=str(e))

    listing = reconciler.listing(subject)
    end = page * reconciler.page_size
    has_more = listing is not None and (
        listing.has_more or any(offset >= end for offset in listing.items)
    )

    return RepositoryPage(
        username=subject,
        page=page,
        page_size=reconciler.page_size,
        repositories=repositories,
        has_more=has_more,
        total_count=listing.total_count if listing is not None else None,
    )


@router.delete("/{username}/repos/cache")
async def clear_user_repositories(
    username: str,
    reconciler: PaginationReconciler = Depends(get_reconciler),
):
    try:
        removed = reconciler.clear(username)
    except InvalidTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if removed:
        return {"status": "success", "message": f"Repository cache cleared for {username}"}
    return {"status": "success", "message": f"No repository cache found for {username}"}
