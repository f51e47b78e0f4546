import logging
from pathlib import Path
from typing import Iterable

from cloner.errors import ItemCleanupError
from cloner.items import MediaItem

logger = logging.getLogger(__name__)


class LocalArtifactJanitor:
    """Removes staged files once their item has been uploaded and recorded."""

    def __init__(self, staging_dir='.'):
        self.staging_dir = Path(staging_dir)

    def cleanup(self, item: MediaItem) -> None:
        path = self.staging_dir / item.local_filename
        try:
            path.unlink()
        except OSError as exc:
            raise ItemCleanupError(f"could not delete {path}: {exc}", item) from exc
        logger.info(f"removed local copy of file {item.local_filename}")

    def cleanup_all(self, items: Iterable[MediaItem]) -> int:
        """Clean every item, continuing past failures. Returns the number removed."""
        removed = 0
        for item in items:
            try:
                self.cleanup(item)
            except ItemCleanupError as exc:
                logger.error(str(exc))
                continue
            removed += 1
        return removed
