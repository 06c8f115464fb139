from .base import LedgerClient, RawRecord

__all__ = ["LedgerClient", "RawRecord"]
