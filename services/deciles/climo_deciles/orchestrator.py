"""
Orchestration and CLI for decile aggregation.

This module coordinates the decile pipeline for each station/model pair:
1. Load every climate record of the pair from the climate store
2. Group records into (day_of_year, hour_of_day) buckets
3. Compute deciles of each tracked index per bucket
4. Replace the pair's stored deciles in one transaction
5. Collect and report per-pair metrics

Pairs are independent. With a Spark master configured they are fanned out
over the cluster, otherwise they run one after another in-process. A failed
pair is reported and never stops the others.
"""
import argparse
import logging
import sys
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pyspark.sql import SparkSession

from .aggregator import DecileAggregator
from .config import DecileConfig
from .migration import import_legacy_archive
from .store import ClimoStore


logger = logging.getLogger(__name__)


def run_pair(config: DecileConfig, site: str, model: str) -> Dict[str, Any]:
    """
    Rebuild the deciles of one station/model pair.

    Opens its own store connection so it can run on any worker.

    Args:
        config: Configuration object
        site: Station identifier
        model: Model name

    Returns:
        Dictionary with pair metrics and status
    """
    start_time = time.time()

    metrics: Dict[str, Any] = {
        "site": site,
        "model": model,
        "status": "running",
        "start_time": datetime.now(timezone.utc).isoformat(),
    }

    store = None
    try:
        store = ClimoStore(config)
        records = store.load_records(site, model)
        metrics["record_count"] = len(records)

        aggregator = DecileAggregator(site, model)
        rows = aggregator.aggregate(records)
        metrics["bucket_count"] = len(rows)
        metrics["empty_buckets"] = [asdict(empty) for empty in aggregator.empty_buckets]

        metrics["written_count"] = store.replace_deciles(site, model, rows)
        metrics["status"] = "success"

        logger.info(
            f"Deciles for {site}/{model} rebuilt: {metrics['written_count']} buckets "
            f"from {len(records)} records"
        )
    except Exception as e:
        metrics["status"] = "failed"
        metrics["error"] = str(e)
        logger.error(f"Decile aggregation failed for {site}/{model}: {e}", exc_info=True)
    finally:
        if store is not None:
            store.close()
        metrics["elapsed_seconds"] = round(time.time() - start_time, 2)
        metrics["end_time"] = datetime.now(timezone.utc).isoformat()

    return metrics


class DecileOrchestrator:
    """Orchestrates decile aggregation over many station/model pairs."""

    def __init__(self, config: DecileConfig):
        """
        Initialize orchestrator.

        Args:
            config: Configuration object
        """
        self.config = config
        self.spark: Optional[SparkSession] = None
        self.store: Optional[ClimoStore] = None

    def setup_spark(self) -> SparkSession:
        """
        Create the Spark session used to fan out station/model pairs.

        Returns:
            Configured SparkSession
        """
        logger.info("Initializing Spark session...")

        builder = SparkSession.builder.appName(self.config.spark_app_name)
        builder.config("spark.master", self.config.spark_master)

        spark = builder.getOrCreate()

        logger.info(f"Spark session created: {spark.version}")

        return spark

    def setup_components(self):
        """Initialize the store and, when configured, Spark."""
        self.store = ClimoStore(self.config)
        self.store.create_tables()

        if self.config.spark_master:
            self.spark = self.setup_spark()
        else:
            logger.info("No Spark master configured, running pairs in-process")

    def select_pairs(
        self,
        sites: Optional[Sequence[str]] = None,
        models: Optional[Sequence[str]] = None,
    ) -> List[Tuple[str, str]]:
        """
        Station/model pairs to aggregate.

        Args:
            sites: Restrict to these sites (default: all in the store)
            models: Restrict to these models (default: all in the store)

        Returns:
            Sorted list of (site, model) pairs with climate records
        """
        available = self.store.pairs()

        if sites:
            known_sites = {site for site, _ in available}
            for site in sites:
                if site not in known_sites:
                    logger.warning(f"Skipping site not in store: {site}")

        return [
            (site, model)
            for site, model in available
            if (not sites or site in sites) and (not models or model in models)
        ]

    def run(self, pairs: Sequence[Tuple[str, str]]) -> List[Dict[str, Any]]:
        """
        Rebuild deciles for every pair.

        Args:
            pairs: (site, model) pairs

        Returns:
            Per-pair metrics in the order of pairs
        """
        pairs = list(pairs)
        if not pairs:
            logger.warning("No station/model pairs to aggregate")
            return []

        logger.info(f"Updating distributions for {len(pairs)} station/model pairs")

        if self.spark is not None:
            config = self.config
            results = (
                self.spark.sparkContext
                .parallelize(pairs, len(pairs))
                .map(lambda pair: run_pair(config, pair[0], pair[1]))
                .collect()
            )
        else:
            results = [run_pair(self.config, site, model) for site, model in pairs]

        failed = [r for r in results if r["status"] != "success"]
        logger.info(
            f"Done updating distributions: {len(results) - len(failed)} succeeded, "
            f"{len(failed)} failed"
        )

        return results

    def reset(self):
        """Delete every stored decile distribution."""
        self.store.reset_deciles()

    def migrate(self, legacy_url: str) -> int:
        """Import a legacy station-number archive into the store."""
        return import_legacy_archive(legacy_url, self.store)

    def cleanup(self):
        """Clean up resources."""
        if self.spark:
            logger.info("Stopping Spark session...")
            self.spark.stop()
            self.spark = None
        if self.store:
            self.store.close()


def print_summary(results: List[Dict[str, Any]]):
    """Print a per-pair summary of a run."""
    print("\n" + "=" * 60)
    print("DECILE AGGREGATION SUMMARY")
    print("=" * 60)
    for metrics in results:
        pair = f"{metrics['site']}/{metrics['model']}"
        if metrics["status"] == "success":
            print(
                f"{pair:<24} {metrics['status']:<8} "
                f"records={metrics['record_count']} buckets={metrics['written_count']} "
                f"empty={len(metrics['empty_buckets'])} ({metrics['elapsed_seconds']}s)"
            )
        else:
            print(f"{pair:<24} {metrics['status']:<8} {metrics.get('error', '')}")
    print("=" * 60 + "\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="climo-deciles",
        description="Model sounding climatology deciles.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rebuild deciles for every station/model pair in the store
  climo-deciles build

  # Rebuild deciles for two sites, GFS only
  climo-deciles update --sites kmso kgpi --models GFS

  # Import a legacy station-number archive
  climo-deciles migrate --legacy-url sqlite:///old/climo.db
        """
    )

    parser.add_argument(
        "operation",
        choices=["build", "update", "reset", "migrate"],
        help="Build or update deciles, reset them, or migrate a legacy archive"
    )

    parser.add_argument(
        "-s", "--sites",
        nargs="+",
        help="Site identifiers (default: all sites in the store)"
    )

    parser.add_argument(
        "-m", "--models",
        nargs="+",
        help="Models to aggregate (default: all models in the store)"
    )

    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL of the climate store (overrides CLIMO_DATABASE_URL)"
    )

    parser.add_argument(
        "--spark-master",
        help="Spark master used to fan out pairs (overrides CLIMO_SPARK_MASTER)"
    )

    parser.add_argument(
        "--legacy-url",
        help="SQLAlchemy URL of the legacy archive for 'migrate'"
    )

    return parser


def main(argv: Optional[Sequence[str]] = None):
    """CLI entry point for the decile service."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.operation == "migrate" and not args.legacy_url:
        parser.error("migrate requires --legacy-url")

    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.spark_master is not None:
        overrides["spark_master"] = args.spark_master
    config = DecileConfig(**overrides)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    orchestrator = DecileOrchestrator(config)

    try:
        orchestrator.setup_components()

        if args.operation == "reset":
            orchestrator.reset()
            sys.exit(0)

        if args.operation == "migrate":
            count = orchestrator.migrate(args.legacy_url)
            print(f"Migrated {count} climate records")
            sys.exit(0)

        pairs = orchestrator.select_pairs(args.sites, args.models)
        results = orchestrator.run(pairs)
        print_summary(results)

        sys.exit(0 if all(r["status"] == "success" for r in results) else 1)

    except Exception as e:
        logger.error(f"Decile operation failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        orchestrator.cleanup()


if __name__ == "__main__":
    main()
