from .broker import BrokerSession, OAuthState
from .holdings import Holding, QuoteCache
from .mutual_funds import MFCASSync, MFFolio, MFHoldingSummary, MFScheme, MFTransaction
from .snapshots import PortfolioSnapshot, SnapshotSourceDetail
from .sync_log import SyncLog
from .system_event import SystemEvent
from .user import User

__all__ = [
    "BrokerSession",
    "OAuthState",
    "Holding",
    "QuoteCache",
    "MFCASSync",
    "MFFolio",
    "MFTransaction",
    "MFScheme",
    "MFHoldingSummary",
    "PortfolioSnapshot",
    "SnapshotSourceDetail",
    "SyncLog",
    "SystemEvent",
    "User",
]
