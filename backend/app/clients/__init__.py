from .mfcentral import MFCentralClient
from .zerodha import ZerodhaClient

__all__ = ["MFCentralClient", "ZerodhaClient"]
