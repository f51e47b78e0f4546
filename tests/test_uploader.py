from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from cloner.errors import ItemUploadError
from cloner.items import MediaItem
from cloner.uploader import ObjectStoreUploader, build_object_key
from fakes import FakeS3


def _staged_item(tmp_path, name="1700000000.5.50.png", body=b"png-bytes"):
    (tmp_path / name).write_bytes(body)
    item = MediaItem(file_id=5, post_id=50, external_url="http://img.example.com/5")
    item.local_filename = name
    item.mime_type = "image/png"
    return item


def test_object_key_is_date_partitioned():
    key = build_object_key("images", "1.2.3.jpg", now=datetime(2024, 2, 9, 23, 59, tzinfo=timezone.utc))
    assert key == "/images/20240209/1.2.3.jpg"


def test_upload_puts_staged_file(tmp_path):
    item = _staged_item(tmp_path)
    s3 = FakeS3()
    before = datetime.now(timezone.utc).strftime("%Y%m%d")

    key = ObjectStoreUploader(s3, tmp_path).upload("media", "images", "public-read", item)

    after = datetime.now(timezone.utc).strftime("%Y%m%d")
    assert key in (f"/images/{before}/{item.local_filename}", f"/images/{after}/{item.local_filename}")
    call = s3.calls[0]
    assert call["Bucket"] == "media"
    assert call["Key"] == key
    assert call["ACL"] == "public-read"
    assert call["ContentType"] == "image/png"
    assert s3.objects[key] == b"png-bytes"


def test_client_error_becomes_upload_error(tmp_path):
    item = _staged_item(tmp_path)
    s3 = FakeS3(error=ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"))

    with pytest.raises(ItemUploadError, match="AccessDenied") as info:
        ObjectStoreUploader(s3, tmp_path).upload("media", "images", "private", item)
    assert info.value.item is item


def test_missing_staged_file_is_upload_error(tmp_path):
    item = MediaItem(file_id=5, post_id=50, external_url="http://img.example.com/5")
    item.local_filename = "gone.png"

    with pytest.raises(ItemUploadError, match="could not open"):
        ObjectStoreUploader(FakeS3(), tmp_path).upload("media", "images", "private", item)
