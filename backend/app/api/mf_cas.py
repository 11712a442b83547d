from __future__ import annotations

from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.errors import http_error
from app.clients.mfcentral import MFCentralClient
from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError, ProtocolError
from app.db.session import get_db
from app.models import MFCASSync, User
from app.schemas.holdings import AllocationResponse, AllocationSliceRead
from app.schemas.mf_cas import (
    MFCASRequest,
    MFCASResponse,
    MFCASSyncRead,
    MFHoldingRead,
    MFHoldingsResponse,
    MFPortfolioSummaryRead,
)
from app.services import mf_cas as mf_service
from app.services.portfolio_aggregator import mf_allocations, mf_portfolio_summary

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()

MFClientFactory = Callable[[Settings], MFCentralClient]


def get_mf_client_factory() -> MFClientFactory:
    """Dependency hook so tests can substitute a fake statement provider."""

    return mf_service.mf_client_from_settings


def _response(
    action: str,
    sync: MFCASSync,
    message: str,
    **extra: object,
) -> MFCASResponse:
    return MFCASResponse(
        success=True,
        action=action,
        sync_id=sync.id,
        sync_status=sync.sync_status,
        otp_reference=sync.otp_reference,
        message=message,
        **extra,  # type: ignore[arg-type]
    )


def _run_action(
    db: Session,
    client: MFCentralClient,
    *,
    user_id: int,
    payload: MFCASRequest,
) -> MFCASResponse:
    if payload.action == "request_otp":
        if not payload.pan:
            raise ProtocolError("PAN is required")
        sync = mf_service.request_otp(
            db,
            client,
            user_id=user_id,
            pan=payload.pan,
            otp_method=payload.otp_method,
            phone=payload.phone,
            email=payload.email,
            time_period=payload.time_period,
            updated_till=payload.updated_till,
            nickname=payload.nickname,
        )
        return _response(payload.action, sync, f"OTP sent via {sync.otp_method}")

    if payload.action == "verify_otp":
        sync = mf_service.verify_otp(
            db,
            client,
            user_id=user_id,
            otp=payload.otp or "",
            otp_reference=payload.otp_reference,
            sync_id=payload.sync_id,
        )
        return _response(payload.action, sync, "OTP verified")

    result = mf_service.fetch_cas(
        db,
        client,
        user_id=user_id,
        otp_reference=payload.otp_reference,
        sync_id=payload.sync_id,
    )
    return _response(
        payload.action,
        result.sync,
        f"Imported {result.holdings_count} schemes from {result.folios_count} folios",
        holdings_count=result.holdings_count,
        folios_count=result.folios_count,
        warnings=result.warnings,
    )


@router.post("/", response_model=MFCASResponse)
def mf_cas_action(
    payload: MFCASRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
    client_factory: MFClientFactory = Depends(get_mf_client_factory),
) -> MFCASResponse:
    """Drive one phase of the request-OTP / verify-OTP / fetch protocol."""

    try:
        client = client_factory(settings)
    except ConnectorError as exc:
        raise http_error(exc) from exc
    try:
        return _run_action(db, client, user_id=user.id, payload=payload)
    except ConnectorError as exc:
        raise http_error(exc) from exc
    finally:
        client.close()


@router.get("/latest", response_model=Optional[MFCASSyncRead])
def latest_mf_sync(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Optional[MFCASSync]:
    return mf_service.latest_sync(db, user_id=user.id)


@router.get("/holdings", response_model=MFHoldingsResponse)
def mf_holdings(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MFHoldingsResponse:
    rows = mf_service.list_mf_holdings(db, user_id=user.id)
    return MFHoldingsResponse(
        summary=MFPortfolioSummaryRead(**mf_portfolio_summary(rows)),
        holdings=[MFHoldingRead.model_validate(r) for r in rows],
    )


@router.get("/allocations", response_model=AllocationResponse)
def mf_holdings_allocations(
    dimension: str = Query("amc"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> AllocationResponse:
    rows = mf_service.list_mf_holdings(db, user_id=user.id)
    try:
        slices = mf_allocations(rows, dimension)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    slice_models: List[AllocationSliceRead] = [
        AllocationSliceRead.model_validate(s) for s in slices
    ]
    return AllocationResponse(
        dimension=dimension,
        total_value=sum(s.value for s in slices),
        slices=slice_models,
    )


__all__ = ["router", "get_mf_client_factory"]
