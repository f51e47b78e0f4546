"""Fetches source bytes for one item, classifies them and stages them locally."""

import logging
import posixpath
import time
from pathlib import Path
from typing import Optional

import requests

from cloner.errors import ItemFetchError
from cloner.items import MediaItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5
CHUNK_SIZE = 64 * 1024

# Exact match only; parameters such as "; charset=" are not stripped
MIME_EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/gif': '.gif',
}


def resolve_extension(mime_type: str, url_path: str) -> str:
    """Map a MIME type to a file extension.

    Returns '' when nothing resolves. The URL path suffix is only consulted
    when the MIME type is empty.
    """
    if mime_type:
        return MIME_EXTENSIONS.get(mime_type, '')
    return posixpath.splitext(url_path)[1]


def _declared_length(response) -> Optional[int]:
    raw = response.headers.get('Content-Length')
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


class ContentFetcher:
    """Downloads one item into the staging directory."""

    def __init__(self, staging_dir='.', timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.staging_dir = Path(staging_dir)
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, item: MediaItem) -> Path:
        """Populate the item's content fields and stream its body to disk.

        Returns the staged path. Raises ItemFetchError on any failure, in
        which case nothing is left on disk.
        """
        logger.info(f"fetching {item.external_url}")
        started = time.monotonic()
        try:
            response = self.session.get(item.external_url, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise ItemFetchError(str(exc), item) from exc

        with response:
            logger.debug(f"took {time.monotonic() - started:.3f}s to get file {item.file_id}")

            item.mime_type = response.headers.get('Content-Type', '')
            item.byte_size = _declared_length(response)
            item.file_ext = resolve_extension(item.mime_type, item.parsed_url.path)

            if not item.file_ext:
                raise ItemFetchError(f"invalid mime type: {item.mime_type}", item)

            if item.mime_type:
                item.file_category = item.mime_type.split('/', 1)[0]
            else:
                item.file_category = 'unknown'

            item.set_local_filename()
            path = self.staging_dir / item.local_filename
            try:
                with open(path, 'wb') as out:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            out.write(chunk)
            except (requests.RequestException, OSError) as exc:
                path.unlink(missing_ok=True)
                raise ItemFetchError(f"could not store {item.local_filename}: {exc}", item) from exc

        logger.info(f"stored file from {item.external_url} as {item.local_filename}")
        return path
