from .client import BOOKKEEPING_ID, Page, StoreClient
from .filters import TrashScope, build_filter, scope_filter

__all__ = ["BOOKKEEPING_ID", "Page", "StoreClient", "TrashScope", "build_filter", "scope_filter"]
