"""
Daily Coinranking market data ingestion package.

This package pulls the paginated coins listing once per day and stores
coin metadata and price/market-cap observations in DuckDB.

Modules:
    config: Environment-driven runtime settings
    coinranking_api: Rate-limited, paginated API client
    duckdb_store: DuckDB persistence layer
    scheduler: Daily UTC timer
    ingestion: Orchestration and control flow
"""

from .coinranking_api import CoinrankingAPI, FetchedRecord
from .config import IngestionConfig, load_config
from .duckdb_store import DuckDBStore
from .ingestion import IngestionOrchestrator, run_ingestion
from .scheduler import DailyScheduler, next_run_delay

__all__ = [
    "CoinrankingAPI",
    "FetchedRecord",
    "IngestionConfig",
    "load_config",
    "DuckDBStore",
    "IngestionOrchestrator",
    "run_ingestion",
    "DailyScheduler",
    "next_run_delay"
]
