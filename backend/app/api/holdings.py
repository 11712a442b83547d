from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.db.session import get_db
from app.models import User
from app.schemas.holdings import (
    AllocationResponse,
    AllocationSliceRead,
    EnrichedHoldingRead,
    PortfolioSummaryRead,
)
from app.services.portfolio_aggregator import (
    holding_allocations,
    load_enriched_ledger,
    summarize,
)

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()


@router.get("/", response_model=List[EnrichedHoldingRead])
def list_holdings(
    source: Optional[List[str]] = Query(None),
    asset_type: Optional[List[str]] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[EnrichedHoldingRead]:
    """Return the caller's ledger with derived values and recommendations."""

    holdings = load_enriched_ledger(
        db, user_id=user.id, sources=source, asset_types=asset_type
    )
    return [EnrichedHoldingRead(**h.to_dict()) for h in holdings]


@router.get("/summary", response_model=PortfolioSummaryRead)
def holdings_summary(
    source: Optional[List[str]] = Query(None),
    asset_type: Optional[List[str]] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PortfolioSummaryRead:
    holdings = load_enriched_ledger(
        db, user_id=user.id, sources=source, asset_types=asset_type
    )
    return PortfolioSummaryRead.model_validate(summarize(holdings))


@router.get("/allocations", response_model=AllocationResponse)
def holdings_allocations(
    dimension: str = Query("sector"),
    source: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> AllocationResponse:
    holdings = load_enriched_ledger(db, user_id=user.id, sources=source)
    try:
        slices = holding_allocations(holdings, dimension)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return AllocationResponse(
        dimension=dimension,
        total_value=sum(s.value for s in slices),
        slices=[AllocationSliceRead.model_validate(s) for s in slices],
    )


__all__ = ["router"]
