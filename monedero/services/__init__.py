"""Services package."""

from monedero.services.rates import (
    BinanceP2PSource,
    CryptoPriceSource,
    OfficialRateSource,
    RateSourceClient,
    UpstreamError,
    UpstreamFetchError,
    UpstreamParseError,
)
from monedero.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ExpenseStorageInterface,
    InsightStorageInterface,
    NotFoundError,
    PersistenceError,
    RateLogInterface,
    StorageError,
)

__all__ = [
    # Rate sources
    "BinanceP2PSource",
    "CryptoPriceSource",
    "OfficialRateSource",
    "RateSourceClient",
    "UpstreamError",
    "UpstreamFetchError",
    "UpstreamParseError",
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ExpenseStorageInterface",
    "InsightStorageInterface",
    "NotFoundError",
    "PersistenceError",
    "RateLogInterface",
    "StorageError",
]
