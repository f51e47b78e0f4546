"""Media cloner service - wires the pipeline together and schedules runs.

Usually run via:
    media-cloner
or:
    python scripts/run_cloner.py

An initial run starts immediately, then a ticker launches a run every
``scheduler.interval_minutes``. Each run must hold the run guard; a tick that
finds a run still in flight is skipped.
"""

import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from cloner.content_fetcher import ContentFetcher
from cloner.database import check_connection, make_engine
from cloner.errors import FatalStartupError, RunAbortError
from cloner.janitor import LocalArtifactJanitor
from cloner.orchestrator import IngestionOrchestrator, RunSummary
from cloner.pending_source import PendingItemSource
from cloner.run_guard import LocalRunGuard, RedisRunGuard
from cloner.search_notifier import ElasticsearchIndexNotifier, SolrIndexNotifier
from cloner.state_recorder import ItemStateRecorder
from cloner.uploader import ObjectStoreUploader, make_s3_client

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class MediaClonerService:
    def __init__(self, orchestrator: IngestionOrchestrator, guard, engine=None,
                 interval_seconds: float = 600):
        self.orchestrator = orchestrator
        self.guard = guard
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._run_count = 0
        self._threads = []

    @classmethod
    def from_config(cls, config) -> "MediaClonerService":
        """Build every collaborator; raises FatalStartupError if one cannot be built."""
        engine = make_engine(config.database_url)
        check_connection(engine)

        s3_client = make_s3_client(
            endpoint_url=config.AWS_ENDPOINT,
            region_name=config.AWS_REGION,
            access_key_id=config.AWS_KEY,
            secret_access_key=config.AWS_SECRET,
        )

        if config.SEARCH_BACKEND == 'elasticsearch':
            notifier = ElasticsearchIndexNotifier(
                hosts=config.ELASTICSEARCH_HOSTS,
                index_name=config.ELASTICSEARCH_INDEX,
                timeout=config.SEARCH_TIMEOUT,
            )
        else:
            notifier = SolrIndexNotifier(config.SOLR_URL, timeout=config.SEARCH_TIMEOUT)

        if config.RUN_LOCK_BACKEND == 'redis':
            guard = RedisRunGuard(
                host=config.REDIS_HOST,
                port=config.REDIS_PORT,
                db=config.REDIS_DB,
                key=config.RUN_LOCK_KEY,
                ttl_seconds=config.RUN_LOCK_TTL,
            )
        else:
            guard = LocalRunGuard()

        staging_dir = config.STAGING_DIR
        staging_dir.mkdir(parents=True, exist_ok=True)

        orchestrator = IngestionOrchestrator(
            source=PendingItemSource(engine, config.DB_SCHEMA, config.RECENCY_WINDOW_HOURS),
            fetcher=ContentFetcher(staging_dir, timeout=config.FETCH_TIMEOUT),
            uploader=ObjectStoreUploader(s3_client, staging_dir),
            recorder=ItemStateRecorder(engine, config.DB_SCHEMA),
            notifier=notifier,
            janitor=LocalArtifactJanitor(staging_dir),
            bucket=config.AWS_BUCKET,
            folder=config.AWS_FOLDER,
            acl=config.AWS_ACL,
            max_attempts=config.MAX_ATTEMPTS,
            max_workers=config.MAX_WORKERS,
        )
        return cls(orchestrator, guard, engine, interval_seconds=config.INTERVAL_MINUTES * 60)

    def run_once(self) -> Optional[RunSummary]:
        """One guarded run. Returns None if the run was skipped or aborted."""
        try:
            acquired = self.guard.acquire()
        except RunAbortError as exc:
            logger.error(f"Run skipped: {exc}")
            return None
        if not acquired:
            logger.warning("Previous run still in progress; skipping this tick")
            return None

        try:
            return self.orchestrator.run_once()
        except RunAbortError as exc:
            logger.error(f"Run aborted: {exc}")
            return None
        finally:
            self.guard.release()

    def _launch(self) -> threading.Thread:
        self._run_count += 1
        thread = threading.Thread(target=self.run_once, name=f"run-{self._run_count}")
        thread.start()
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        return thread

    def _wait_for_runs(self) -> None:
        in_flight = [t for t in self._threads if t.is_alive()]
        if in_flight:
            logger.info(f"waiting for {len(in_flight)} in-flight run(s) to finish")
        for thread in in_flight:
            thread.join()
        self._threads = []

    def run_forever(self) -> None:
        """Initial run now, then one run per interval until stopped.

        On stop the ticker ends first; runs already started are allowed to
        finish before the engine is closed.
        """
        logger.info("starting media cloner")
        self._launch()
        logger.info(f"starting ticker to clone media every {self.interval_seconds:g}s")
        try:
            while not self._stop.wait(self.interval_seconds):
                self._launch()
        except KeyboardInterrupt:
            logger.info("Stopping media cloner...")
        finally:
            self._wait_for_runs()
            self.close()

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        close_notifier = getattr(getattr(self.orchestrator, 'notifier', None), 'close', None)
        if close_notifier is not None:
            close_notifier()
        if self.engine is not None:
            logger.info(f"closing database connection at {datetime.now().isoformat()}")
            self.engine.dispose()


def main(argv=None):
    load_dotenv(dotenv_path=PROJECT_ROOT / '.env')

    # Imported late so .env overrides are visible when the config is read
    from config.config_loader import get_config

    try:
        config = get_config()
    except FatalStartupError as exc:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        logger.critical(str(exc))
        return 1

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        filename=config.LOG_FILE,
    )

    try:
        service = MediaClonerService.from_config(config)
    except FatalStartupError as exc:
        logger.critical(str(exc))
        return 1

    signal.signal(signal.SIGTERM, lambda signum, frame: service.stop())
    service.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
