from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.errors import http_error
from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError
from app.db.session import get_db
from app.models import User
from app.schemas.uploads import ReconciliationRead, SkippedRowRead, UploadResponse
from app.services.file_import import DEFAULT_UPLOAD_SOURCE, import_holdings_file
from app.services.upload_progress import UploadProgressTracker

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()


@router.post("/holdings", response_model=UploadResponse)
def upload_holdings(
    file: UploadFile = File(...),
    source: str = Form(DEFAULT_UPLOAD_SOURCE),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
) -> UploadResponse:
    """Import a broker-exported spreadsheet, replacing that source's holdings."""

    content = file.file.read(settings.upload_max_bytes + 1)
    tracker = UploadProgressTracker()
    try:
        outcome = import_holdings_file(
            db,
            settings,
            user_id=user.id,
            filename=file.filename or "",
            content=content,
            source=source,
            tracker=tracker,
        )
    except ConnectorError as exc:
        raise http_error(exc) from exc

    return UploadResponse(
        success=True,
        status=outcome.status,
        source=outcome.source,
        total_rows=outcome.total_rows,
        valid_holdings=outcome.valid_holdings,
        holdings_count=outcome.valid_holdings,
        skipped_count=outcome.skipped_count,
        skipped_rows=[SkippedRowRead.model_validate(s) for s in outcome.skipped],
        warnings=outcome.warnings,
        reconciliation=(
            ReconciliationRead.model_validate(outcome.reconciliation)
            if outcome.reconciliation is not None
            else None
        ),
        progress=outcome.progress,
    )


__all__ = ["router"]
