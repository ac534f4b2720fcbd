from .gamma import MarketDataService, MarketInfo
from .http_service import HttpService
from .price_feed import PriceFeed
from .store import BestEffort, LocalStateStore, StateStore
from .supabase_store import SupabaseStore

__all__ = [
    "BestEffort",
    "HttpService",
    "LocalStateStore",
    "MarketDataService",
    "MarketInfo",
    "PriceFeed",
    "StateStore",
    "SupabaseStore",
]
