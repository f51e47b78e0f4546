"""Uploads staged artifacts into S3-compatible object storage."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloner.errors import FatalStartupError, ItemUploadError
from cloner.items import MediaItem

logger = logging.getLogger(__name__)


def build_object_key(folder: str, local_filename: str, now: Optional[datetime] = None) -> str:
    """``/<folder>/<YYYYMMDD>/<local_filename>``, dated at upload time."""
    now = now or datetime.now(timezone.utc)
    return "/" + folder + "/" + now.strftime('%Y%m%d') + "/" + local_filename


def make_s3_client(*, endpoint_url=None, region_name=None,
                   access_key_id=None, secret_access_key=None):
    try:
        return boto3.client(
            's3',
            endpoint_url=endpoint_url,
            region_name=region_name,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
    except (BotoCoreError, ValueError) as exc:
        raise FatalStartupError(f"could not connect to s3 storage provider: {exc}") from exc


class ObjectStoreUploader:
    def __init__(self, s3_client, staging_dir='.'):
        self.s3 = s3_client
        self.staging_dir = Path(staging_dir)

    def upload(self, bucket: str, folder: str, acl: str, item: MediaItem) -> str:
        """Put the item's staged file and return its object key."""
        key = build_object_key(folder, item.local_filename)
        path = self.staging_dir / item.local_filename
        try:
            with open(path, 'rb') as body:
                self.s3.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ACL=acl,
                    ContentType=item.mime_type,
                )
        except OSError as exc:
            raise ItemUploadError(f"could not open {path}: {exc}", item) from exc
        except (BotoCoreError, ClientError) as exc:
            raise ItemUploadError(f"could not upload {key}: {exc}", item) from exc

        logger.info(f"uploaded file to object storage. URI is {key}")
        return key
