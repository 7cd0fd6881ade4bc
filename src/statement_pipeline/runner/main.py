"""
CLI main entry point.
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..confidence import ConfidenceScorer
from ..errors import PipelineError
from ..extraction import ExtractionRouter, ExtractionServiceClient, RetryPolicy
from ..normalize import TransactionNormalizer
from ..schemas import JobStatus
from ..state_store import ExtractPersister, StateStore
from ..storage import DocumentFetcher, S3ObjectStorage
from .coordinator import JobCoordinator
from .poller import UploadPoller
from .sweeper import JobSweeper

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statement-pipeline",
        description="Extract, reconcile and summarize uploaded bank statements",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    subparsers.add_parser("init", help="Write a default config and create the database")

    # submit command
    submit_parser = subparsers.add_parser("submit", help="Register an upload and queue a job")
    submit_parser.add_argument(
        "--file",
        dest="files",
        action="append",
        required=True,
        help="Object key of an uploaded file (repeat for multi-page uploads)",
    )
    submit_parser.add_argument(
        "--mime",
        type=str,
        default=None,
        help="Declared mime type (e.g. application/pdf, image/jpeg)",
    )
    submit_parser.add_argument(
        "--owner",
        type=str,
        default=None,
        help="Opaque owner reference",
    )

    # run-job command
    run_parser = subparsers.add_parser("run-job", help="Run one queued job")
    run_parser.add_argument("job_id", type=str, help="Job ID")

    # worker command
    worker_parser = subparsers.add_parser(
        "worker", help="Run due jobs and recover stale ones on an interval"
    )
    worker_parser.add_argument(
        "--once",
        action="store_true",
        help="Sweep once and exit",
    )
    worker_parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between sweeps (default: 5)",
    )
    worker_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum jobs per sweep (default: 10)",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show upload status")
    status_parser.add_argument("upload_id", type=str, nargs="?", help="Upload ID")
    status_parser.add_argument(
        "--wait",
        action="store_true",
        help="Poll until the upload is done or failed",
    )

    # show command
    show_parser = subparsers.add_parser("show", help="Print the extract of an upload as JSON")
    show_parser.add_argument("upload_id", type=str, help="Upload ID")

    return parser


def build_coordinator(config: Config, store: StateStore) -> JobCoordinator:
    """Wire a coordinator from configuration."""
    storage = S3ObjectStorage(
        endpoint_url=config.storage.endpoint_url,
        region=config.storage.region,
        access_key=config.storage.access_key,
        secret_key=config.storage.secret_key,
    )
    fetcher = DocumentFetcher(
        storage,
        bucket=config.storage.bucket,
        ttl_seconds=config.storage.signed_url_ttl_seconds,
        timeout=config.storage.fetch_timeout_seconds,
        max_retries=config.storage.fetch_max_retries,
    )
    service = ExtractionServiceClient(
        base_url=config.extraction.base_url,
        model_text=config.extraction.model_text,
        model_vision=config.extraction.model_vision,
        auth_header=config.extraction.auth_header,
        timeout_seconds=config.extraction.timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=config.extraction.max_attempts,
            base_delay=config.extraction.backoff_base_seconds,
            max_delay=config.extraction.backoff_max_seconds,
        ),
    )
    router = ExtractionRouter(
        service,
        default_currency=config.extraction.default_currency,
        min_text_chars=config.extraction.min_text_chars,
        max_text_chars=config.extraction.max_text_chars,
        max_pages=config.extraction.max_pages,
        raster_resolution=config.extraction.raster_resolution,
    )
    return JobCoordinator(
        store,
        fetcher,
        router,
        persister=ExtractPersister(store, batch_size=config.pipeline.transaction_batch_size),
        normalizer=TransactionNormalizer(config.extraction.default_currency),
        scorer=ConfidenceScorer(expected_transactions=config.pipeline.expected_transactions),
        pipeline=config.pipeline,
        default_currency=config.extraction.default_currency,
    )


def cmd_init(config: Config, config_path: Path) -> int:
    """Create config file and database."""
    if config_path.exists():
        print(f"  Config already exists: {config_path}")
    else:
        create_default_config(config_path)
        print(f"✓ Wrote default config to {config_path}")

    store = StateStore(config.state_db_path)
    for version, name, applied in store.migration_status():
        mark = "✓" if applied else "…"
        print(f"  {mark} migration {version:03d}_{name}")

    print(f"✓ Database ready at {config.state_db_path}")
    return 0


def cmd_submit(config: Config, files: list[str], mime: str | None, owner: str | None) -> int:
    """Register an upload and queue its job."""
    store = StateStore(config.state_db_path)
    upload_id = store.create_upload(files, mime_type=mime, owner_ref=owner)
    job_id = store.create_job(upload_id)
    print(json.dumps({"upload_id": upload_id, "job_id": job_id}))
    return 0


def cmd_run_job(config: Config, job_id: str) -> int:
    """Run a single job."""
    store = StateStore(config.state_db_path)
    coordinator = build_coordinator(config, store)
    status = coordinator.run_job(job_id)

    if status is None:
        print(f"❌ Job {job_id} not found")
        return 1

    job = store.get_job(job_id)
    upload = store.get_upload(job.upload_id) if job else None
    if upload is not None and upload.error_code:
        print(f"  {upload.error_code}: {upload.last_error}")
    print(f"Job {job_id}: {status.value}")
    return 1 if status == JobStatus.ERROR else 0


def cmd_worker(config: Config, once: bool, interval: float, limit: int) -> int:
    """Run the sweeper loop."""
    store = StateStore(config.state_db_path)
    sweeper = JobSweeper(
        store,
        build_coordinator(config, store),
        stale_after_seconds=config.pipeline.stale_after_seconds,
        max_requeue_attempts=config.pipeline.max_requeue_attempts,
    )

    if once:
        counts = sweeper.sweep(limit)
        print(json.dumps(counts))
        return 0

    shutdown = {"requested": False}

    def _signal_handler(signum, frame):
        logger.info("Shutdown requested, finishing current job...")
        shutdown["requested"] = True

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    sweeper.run_forever(interval, limit, should_stop=lambda: shutdown["requested"])
    return 0


def cmd_status(config: Config, upload_id: str | None, wait: bool) -> int:
    """Show upload status, or pipeline statistics without an upload ID."""
    store = StateStore(config.state_db_path)

    if upload_id is None:
        print(json.dumps(store.get_stats(), indent=2))
        return 0

    if wait:
        poller = UploadPoller(store)
        upload = poller.wait(
            upload_id,
            on_update=lambda u: print(f"  {u.stage} {u.progress}%", file=sys.stderr),
        )
    else:
        upload = store.get_upload(upload_id)

    if upload is None:
        print(f"❌ Upload {upload_id} not found")
        return 1

    print(json.dumps(upload.to_dict(), indent=2))
    return 0


def cmd_show(config: Config, upload_id: str) -> int:
    """Print the live extract of an upload."""
    store = StateStore(config.state_db_path)
    upload = store.get_upload(upload_id)
    if upload is None:
        print(f"❌ Upload {upload_id} not found")
        return 1
    if not upload.extract_ref:
        print(f"❌ Upload {upload_id} has no extract (status: {upload.status.value})")
        return 1

    extract = store.get_extract(upload.extract_ref)
    if extract is None:
        print(f"❌ Extract {upload.extract_ref} is missing")
        return 1

    output = {
        "extract": extract.summary,
        "transactions": store.get_transactions(extract.id),
        "subscriptions": store.get_subscriptions(extract.id),
    }
    print(json.dumps(output, indent=2, default=str))
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Load config
    try:
        config = load_config(parsed.config)
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "init":
            return cmd_init(config, parsed.config)
        elif parsed.command == "submit":
            return cmd_submit(config, parsed.files, parsed.mime, parsed.owner)
        elif parsed.command == "run-job":
            return cmd_run_job(config, parsed.job_id)
        elif parsed.command == "worker":
            return cmd_worker(config, parsed.once, parsed.interval, parsed.limit)
        elif parsed.command == "status":
            return cmd_status(config, parsed.upload_id, parsed.wait)
        elif parsed.command == "show":
            return cmd_show(config, parsed.upload_id)
        else:
            parser.print_help()
            return 1
    except PipelineError as e:
        print(f"❌ {e.user_message} ({e.code}: {e})")
        return 1


if __name__ == "__main__":
    sys.exit(main())
