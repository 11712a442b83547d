from .auth import UserRead
from .holdings import (
    AllocationResponse,
    AllocationSliceRead,
    EnrichedHoldingRead,
    PortfolioSummaryRead,
)
from .kite import (
    ClaimSessionResponse,
    DisconnectResponse,
    LoginUrlResponse,
    SessionStatusRead,
    SyncResponse,
)
from .mf_cas import (
    MFCASRequest,
    MFCASResponse,
    MFCASSyncRead,
    MFHoldingRead,
    MFHoldingsResponse,
    MFPortfolioSummaryRead,
)
from .snapshots import (
    SnapshotCaptureRequest,
    SnapshotCaptureResponse,
    SnapshotDetailRead,
    SnapshotRead,
)
from .sync_logs import SourceHealthRead, SyncLogRead
from .system_events import SystemEventRead
from .uploads import ReconciliationRead, SkippedRowRead, UploadResponse

__all__ = [
    "UserRead",
    "AllocationResponse",
    "AllocationSliceRead",
    "EnrichedHoldingRead",
    "PortfolioSummaryRead",
    "ClaimSessionResponse",
    "DisconnectResponse",
    "LoginUrlResponse",
    "SessionStatusRead",
    "SyncResponse",
    "MFCASRequest",
    "MFCASResponse",
    "MFCASSyncRead",
    "MFHoldingRead",
    "MFHoldingsResponse",
    "MFPortfolioSummaryRead",
    "SnapshotCaptureRequest",
    "SnapshotCaptureResponse",
    "SnapshotDetailRead",
    "SnapshotRead",
    "SourceHealthRead",
    "SyncLogRead",
    "SystemEventRead",
    "ReconciliationRead",
    "SkippedRowRead",
    "UploadResponse",
]
