"""Object storage adapters."""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from atelier.services.storage_service import (
    LocalObjectStorage,
    S3ObjectStorage,
    StorageError,
    StorageTransientError,
    extension_for,
)


class RecordingS3Client:
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = []

    def put_object(self, **kwargs):
        self.calls.append(kwargs)
        if self.errors:
            raise self.errors.pop(0)


def _client_error(status, code):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutObject",
    )


def test_local_storage_writes_file_and_builds_url(tmp_path):
    storage = LocalObjectStorage(root=str(tmp_path), base_url="http://files.test/")

    stored = storage.upload("generated-images", "u1/g1/r1.png", b"png-bytes", "image/png")

    assert (tmp_path / "generated-images" / "u1" / "g1" / "r1.png").read_bytes() == b"png-bytes"
    assert stored.url == "http://files.test/generated-images/u1/g1/r1.png"


def test_s3_retries_server_errors():
    client = RecordingS3Client(errors=[_client_error(503, "SlowDown")])

    stored = S3ObjectStorage(client=client).upload("purchased-images", "u1/downloads/r1.png", b"x", "image/png")

    assert len(client.calls) == 2
    assert client.calls[-1]["Key"] == "u1/downloads/r1.png"
    assert stored.url.endswith("/u1/downloads/r1.png")


def test_s3_access_denied_is_not_retried():
    client = RecordingS3Client(errors=[_client_error(403, "AccessDenied")])

    with pytest.raises(StorageError):
        S3ObjectStorage(client=client).upload("purchased-images", "k", b"x", "image/png")
    assert len(client.calls) == 1


def test_s3_connection_errors_exhaust_to_transient():
    errors = [EndpointConnectionError(endpoint_url="https://s3.test") for _ in range(3)]
    client = RecordingS3Client(errors=errors)

    with pytest.raises(StorageTransientError):
        S3ObjectStorage(client=client).upload("generated-images", "k", b"x", "image/png")
    assert len(client.calls) == 3


def test_extension_for_mime_types():
    assert extension_for("image/jpeg") == "jpg"
    assert extension_for("IMAGE/WEBP") == "webp"
    assert extension_for(None) == "png"


def test_app_builds_storage_at_startup():
    from fastapi.testclient import TestClient

    from atelier.main import app

    with TestClient(app):
        assert isinstance(app.state.storage, LocalObjectStorage)
