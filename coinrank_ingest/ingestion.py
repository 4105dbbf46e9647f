"""
Ingestion orchestration for the daily Coinranking listing.

One cycle fetches every configured page (skipping pages that fail) and then
persists the result: coins are upserted and one observation per record is
appended, both inside a single transaction.
"""

import time
import logging
import threading
from typing import Optional, Dict, Any, List

import duckdb

from .config import IngestionConfig
from .coinranking_api import CoinrankingAPI, FetchedRecord
from .duckdb_store import DuckDBStore
from .rate_limiter import TokenBucketLimiter
from .scheduler import DailyScheduler

logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """
    Runs fetch-then-persist cycles against an injected store.

    The store (and its connection) lives for the whole process; the
    orchestrator never opens connections itself.
    """

    def __init__(
        self,
        config: IngestionConfig,
        store: DuckDBStore,
        api: Optional[CoinrankingAPI] = None,
        stop_event: Optional[threading.Event] = None
    ):
        """
        :param config: Validated runtime configuration
        :param store: Open store shared across cycles
        :param api: Optional preconfigured API client (tests inject one with a fake limiter)
        :param stop_event: Shutdown flag shared with the scheduler; setting it
                           ends an in-flight fetch before its next request
        """
        self.config = config
        self.store = store
        self.api = api or CoinrankingAPI(
            config.api,
            TokenBucketLimiter(config.api.rate_interval_seconds, burst=1)
        )
        self.stop_event = stop_event or threading.Event()

    def fetch(self) -> List[FetchedRecord]:
        return self.api.fetch_all(self.config.api.pages, stop_event=self.stop_event)

    def run_cycle(self) -> Dict[str, Any]:
        """
        Execute one ingestion cycle.

        Page failures are absorbed by the fetch loop. A store failure rolls
        the cycle back and is reported in the returned summary instead of
        being raised, so the schedule survives it. A cycle interrupted by the
        stop event persists nothing. Any other error marks the run as failed
        and is re-raised.

        :return: Cycle summary
        """
        start = time.monotonic()
        result = {
            "status": "running",
            "records_fetched": 0,
            "coins_upserted": 0,
            "observations_appended": 0,
            "error_message": None
        }

        try:
            self.store.update_ingestion_state(run_status=DuckDBStore.RUN_STATUS_RUNNING)

            records = self.fetch()
            result["records_fetched"] = len(records)

            if self.stop_event.is_set():
                logger.warning(f"[job] Stop requested, discarding {len(records)} fetched records")
                self.store.update_ingestion_state(run_status=DuckDBStore.RUN_STATUS_IDLE)
                result["status"] = "cancelled"
                result["duration_seconds"] = time.monotonic() - start
                return result

            try:
                written = self.store.persist_cycle(records)
            except duckdb.Error as e:
                logger.error(f"[job] Persistence failed, cycle rolled back: {e}")
                self.store.update_ingestion_state(run_status=DuckDBStore.RUN_STATUS_ERROR)
                result["status"] = "error"
                result["error_message"] = str(e)
                result["duration_seconds"] = time.monotonic() - start
                return result

        except Exception as e:
            logger.error(f"[job] Cycle failed: {e}")
            self.store.update_ingestion_state(run_status=DuckDBStore.RUN_STATUS_ERROR)
            raise

        result.update(written)
        result["status"] = "completed"
        result["duration_seconds"] = time.monotonic() - start

        self.store.update_ingestion_state(
            run_status=DuckDBStore.RUN_STATUS_IDLE,
            last_record_count=len(records)
        )

        logger.info(f"[job] Completed: inserted/updated {written['coins_upserted']} coins, "
                    f"appended {written['observations_appended']} observations "
                    f"from {len(records)} records")
        return result

    def get_status(self) -> Dict[str, Any]:
        """
        Get current ingestion status.

        :return: Status summary dictionary
        """
        return self.store.get_ingestion_summary()

    def scheduler(self, **kwargs) -> DailyScheduler:
        """
        Build a daily scheduler that runs this orchestrator's cycle.

        The scheduler and the fetch loop share one stop event, so stopping
        the scheduler also cuts short a cycle that is already running.
        """
        if kwargs.get("stop_event") is None:
            kwargs["stop_event"] = self.stop_event
        self.stop_event = kwargs["stop_event"]
        return DailyScheduler(self.run_cycle, self.config.run_at, **kwargs)

    def stop(self):
        self.stop_event.set()

    def close(self):
        """Close database connection."""
        self.store.close()


def run_ingestion(config: IngestionConfig) -> Dict[str, Any]:
    """
    Convenience function to run a single ingestion cycle immediately.

    :param config: Runtime configuration
    :return: Cycle summary
    """
    orchestrator = IngestionOrchestrator(config, DuckDBStore(config.db_path))
    try:
        return orchestrator.run_cycle()
    finally:
        orchestrator.close()
