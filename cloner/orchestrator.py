"""Ingestion orchestrator - drives every pending item through the pipeline.

Per item: fetch -> upload -> record('retrieved') -> notify. A fetch failure
records the attempt (escalating to 'failed' at the attempt ceiling) and
skips the item. Staged files of retrieved items are removed once every item
has been processed.
"""

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Dict, List

from cloner.errors import ItemFetchError, ItemRecordError, ItemUploadError
from cloner.items import LifecycleState, MediaItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class ItemOutcome(str, enum.Enum):
    RETRIEVED = 'retrieved'
    RETRIED = 'retried'
    FAILED = 'failed'
    UPLOAD_ERROR = 'upload_error'
    RECORD_ERROR = 'record_error'
    ERROR = 'error'


@dataclass
class RunSummary:
    total: int = 0
    retrieved: int = 0
    retried: int = 0
    failed: int = 0
    upload_errors: int = 0
    record_errors: int = 0
    errors: int = 0
    cleaned: int = 0

    _FIELDS = {
        ItemOutcome.RETRIEVED: 'retrieved',
        ItemOutcome.RETRIED: 'retried',
        ItemOutcome.FAILED: 'failed',
        ItemOutcome.UPLOAD_ERROR: 'upload_errors',
        ItemOutcome.RECORD_ERROR: 'record_errors',
        ItemOutcome.ERROR: 'errors',
    }

    def add(self, outcome: ItemOutcome) -> None:
        name = self._FIELDS[outcome]
        setattr(self, name, getattr(self, name) + 1)

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class IngestionOrchestrator:
    """Runs one pass over the pending set.

    Parameters
    ----------
    source, fetcher, uploader, recorder, notifier, janitor
        The pipeline components. Only ``notify`` is allowed to fail silently.
    bucket, folder, acl : str
        Object storage target for every upload.
    max_attempts : int, default=3
        A fetch failure on an item already recorded this many times marks it failed.
    max_workers : int, default=1
        Items processed concurrently. 1 keeps the pipeline strictly sequential.
    """

    def __init__(self, source, fetcher, uploader, recorder, notifier, janitor,
                 bucket: str, folder: str, acl: str,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS, max_workers: int = 1):
        self.source = source
        self.fetcher = fetcher
        self.uploader = uploader
        self.recorder = recorder
        self.notifier = notifier
        self.janitor = janitor
        self.bucket = bucket
        self.folder = folder
        self.acl = acl
        self.max_attempts = int(max_attempts)
        self.max_workers = max(1, int(max_workers))

    def run_once(self) -> RunSummary:
        """Process the current pending set. RunAbortError from the source propagates."""
        items = self.source.list_pending()
        summary = RunSummary(total=len(items))
        if not items:
            logger.info("No pending files to process")
            return summary

        logger.info(f"Processing {len(items)} files...")
        # Index updates are detached from the item pipeline; the pool is
        # drained before the run returns.
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix='index-notify') as notify_pool:
            if self.max_workers > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='item') as pool:
                    outcomes = list(pool.map(lambda item: self._process_safely(item, notify_pool), items))
            else:
                outcomes = [self._process_safely(item, notify_pool) for item in items]

        retrieved: List[MediaItem] = []
        for item, outcome in zip(items, outcomes):
            summary.add(outcome)
            if outcome is ItemOutcome.RETRIEVED:
                retrieved.append(item)

        summary.cleaned = self.janitor.cleanup_all(retrieved)

        logger.info(
            "Run summary: total=%d retrieved=%d retried=%d failed=%d upload_errors=%d "
            "record_errors=%d errors=%d cleaned=%d",
            summary.total, summary.retrieved, summary.retried, summary.failed,
            summary.upload_errors, summary.record_errors, summary.errors, summary.cleaned,
        )
        return summary

    def _process_safely(self, item: MediaItem, notify_pool) -> ItemOutcome:
        try:
            return self.process_item(item, notify_pool)
        except Exception as e:
            logger.error(f"Unexpected error while processing {item.describe()}: {e}", exc_info=True)
            return ItemOutcome.ERROR

    def process_item(self, item: MediaItem, notify_pool=None) -> ItemOutcome:
        """Drive a single item through fetch, upload, record and notify."""
        try:
            self.fetcher.fetch(item)
        except ItemFetchError as exc:
            logger.warning(f"could not fetch file {item.describe()}: {exc}")
            return self._record_fetch_failure(item)

        try:
            item.storage_reference = self.uploader.upload(self.bucket, self.folder, self.acl, item)
        except ItemUploadError as exc:
            # Not recorded: upload failures do not count toward the attempt ceiling
            logger.error(f"could not upload {item.describe()} for this reason: {exc}")
            return ItemOutcome.UPLOAD_ERROR

        item.state = LifecycleState.RETRIEVED
        try:
            self.recorder.record(item)
        except ItemRecordError as exc:
            logger.error(f"could not update db with file's retrieved state ({item.describe()}): {exc}")
            return ItemOutcome.RECORD_ERROR

        if notify_pool is not None:
            notify_pool.submit(self._notify, item)
        else:
            self._notify(item)
        return ItemOutcome.RETRIEVED

    def _record_fetch_failure(self, item: MediaItem) -> ItemOutcome:
        # Ceiling is checked against the count before this attempt is recorded
        if item.attempts >= self.max_attempts:
            item.state = LifecycleState.FAILED
            outcome = ItemOutcome.FAILED
        else:
            outcome = ItemOutcome.RETRIED

        try:
            self.recorder.record(item)
        except ItemRecordError as exc:
            logger.error(f"could not record {outcome.value} attempt for {item.describe()}: {exc}")
            return ItemOutcome.RECORD_ERROR

        if outcome is ItemOutcome.FAILED:
            logger.warning(f"giving up on {item.describe()} after {item.attempts} attempts")
        return outcome

    def _notify(self, item: MediaItem) -> None:
        try:
            self.notifier.notify(item)
        except Exception as e:
            logger.error(f"Search index notification crashed for post {item.post_id}: {e}", exc_info=True)
