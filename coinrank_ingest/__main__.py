import sys
import signal
import logging
import argparse

from .config import load_config, ConfigError
from .duckdb_store import DuckDBStore
from .ingestion import IngestionOrchestrator, run_ingestion

logger = logging.getLogger("coinrank_ingest")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Daily Coinranking listing ingestion")
    parser.add_argument("--once", action="store_true", help="run a single cycle now and exit")
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.once:
        result = run_ingestion(config)
        print(f"Cycle {result['status']}: {result['records_fetched']} records fetched, "
              f"{result['coins_upserted']} coins upserted, "
              f"{result['observations_appended']} observations appended")
        return 0 if result["status"] == "completed" else 1

    orchestrator = IngestionOrchestrator(config, DuckDBStore(config.db_path))
    scheduler = orchestrator.scheduler()

    def handle_shutdown(signum, frame):
        if scheduler.stop_event.is_set():
            logger.warning(f"Received signal {signum} again, exiting immediately")
            raise KeyboardInterrupt
        logger.info(f"Received signal {signum}, shutting down after the current request")
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info(f"Daily ingestion scheduled at {config.run_at} UTC")
    try:
        scheduler.run_forever()
    finally:
        orchestrator.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
