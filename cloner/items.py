# Models for the media items moved through the cloning pipeline

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from urllib.parse import ParseResult, urlparse


class LifecycleState(str, enum.Enum):
    PENDING = 'pending'
    RETRIEVED = 'retrieved'
    FAILED = 'failed'


@dataclass
class MediaItem:
    """One row of the files table, mutated in place as it moves through the pipeline."""

    # Identity
    file_id: int
    post_id: int
    external_url: str

    # Lifecycle
    state: LifecycleState = LifecycleState.PENDING
    attempts: int = 0
    created: Optional[datetime] = None
    modified: Optional[datetime] = None

    # Derived during fetch
    file_category: str = ''
    mime_type: str = ''
    file_ext: str = ''
    byte_size: Optional[int] = None
    local_filename: str = ''

    # Set once uploaded
    storage_reference: Optional[str] = None

    parsed_url: ParseResult = field(init=False, repr=False)

    def __post_init__(self):
        # urlparse raises ValueError for malformed netlocs (e.g. bad IPv6 brackets)
        self.parsed_url = urlparse(self.external_url)
        self.state = LifecycleState(self.state)

    def set_local_filename(self, now: Optional[datetime] = None) -> None:
        """Name the staged file once the extension is known.

        Encodes the current unix time plus both identifiers so names never
        collide across runs.
        """
        if not self.file_ext:
            return
        now = now or datetime.now()
        self.local_filename = f"{int(now.timestamp())}.{self.file_id}.{self.post_id}{self.file_ext}"

    def describe(self) -> str:
        return f"file={self.file_id} post={self.post_id} url={self.external_url}"
