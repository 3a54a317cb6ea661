import asyncio
import base64
import hashlib
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from simples3 import ClientConfig, FixedStrategy, ObjectClient
from simples3.exceptions import TransportError
from simples3.s3.models import (ObjectHead, S3CopyObjectRes, S3ListObjectsRes,
                                S3Object)


@dataclass
class StoredObject:
    data: bytes
    last_modified: datetime
    metadata: dict = field(default_factory=dict)

    @property
    def etag(self) -> str:
        return f'"{hashlib.md5(self.data).hexdigest()}"'


class InMemoryTransport:
    """Transport fake backed by a dict, with ListObjects v1 ordering and paging."""

    def __init__(self, chunk_size: int = 256):
        self.chunk_size = chunk_size
        self.objects: dict[tuple[str, str], StoredObject] = {}
        self.etag_overrides: dict[str, str] = {}
        self.failures: dict[str, TransportError] = {}
        self.puts: list[dict] = []
        self.calls: list[str] = []
        self.copy_headers: list[dict | None] = []
        self.stream_error: Exception | None = None
        self.stream_stall = False
        self.open_streams = 0
        self.connected = False

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False

    def _enter(self, op: str):
        self.calls.append(op)
        if op in self.failures:
            raise self.failures[op]

    def _get(self, bucket: str, key: str) -> StoredObject:
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise TransportError(
                status=404, reason="Not Found", context=f"{bucket}/{key}", code="NoSuchKey"
            ) from None

    @asynccontextmanager
    async def get_object_stream(self, bucket, key):
        self._enter("get")
        obj = self._get(bucket, key)

        async def chunks():
            for start in range(0, len(obj.data), self.chunk_size):
                yield obj.data[start : start + self.chunk_size]
                if self.stream_error is not None:
                    raise self.stream_error
                if self.stream_stall:
                    await asyncio.Event().wait()

        self.open_streams += 1
        try:
            yield chunks()
        finally:
            self.open_streams -= 1

    async def put_object(self, bucket, key, body, *, content_md5=None, content_length=None):
        self._enter("put")
        if isinstance(body, bytes):
            data = body
        else:
            data = b"".join([chunk async for chunk in body])

        self.puts.append(
            {
                "key": key,
                "content_md5": content_md5,
                "content_length": content_length,
                "streamed": not isinstance(body, bytes),
            }
        )

        if content_md5 is not None:
            actual = base64.b64encode(hashlib.md5(data).digest()).decode()
            if actual != content_md5:
                raise TransportError(status=400, reason="Bad Request", context=key, code="BadDigest")

        obj = StoredObject(data=data, last_modified=datetime.now(timezone.utc))
        self.objects[(bucket, key)] = obj
        return obj.etag

    async def head_object(self, bucket, key):
        self._enter("head")
        obj = self._get(bucket, key)
        return ObjectHead(
            key=key,
            size_bytes=len(obj.data),
            etag=self.etag_overrides.get(key, obj.etag),
            last_modified=obj.last_modified,
            metadata=dict(obj.metadata),
        )

    async def list_objects(self, bucket, *, prefix=None, marker=None, max_keys=None):
        self._enter("list")
        keys = sorted(
            key
            for (b, key) in self.objects
            if b == bucket
            and key.startswith(prefix or "")
            and (marker is None or key > marker)
        )
        limit = max_keys or 1000
        page = keys[:limit]
        return S3ListObjectsRes(
            objects=[
                S3Object(
                    key=key,
                    last_modified=self.objects[(bucket, key)].last_modified,
                    etag=self.objects[(bucket, key)].etag.strip('"'),
                    size=len(self.objects[(bucket, key)].data),
                )
                for key in page
            ],
            is_truncated=len(keys) > limit,
        )

    async def copy_object(
        self, bucket, key, *, source_bucket, source_key, metadata_directive="COPY", extra_headers=None
    ):
        self._enter("copy")
        self.copy_headers.append(extra_headers)
        source = self._get(source_bucket, source_key)
        assert metadata_directive == "COPY"
        obj = StoredObject(
            data=source.data,
            last_modified=datetime.now(timezone.utc),
            metadata=dict(source.metadata),
        )
        self.objects[(bucket, key)] = obj
        return S3CopyObjectRes(etag=obj.etag, last_modified=obj.last_modified)

    async def delete_object(self, bucket, key):
        self._enter("delete")
        self.objects.pop((bucket, key), None)


@pytest.fixture
def config():
    return ClientConfig(
        bucket="bloody-simple-s3",
        access_key_id="AKIDEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
    )


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def client(config, transport):
    return ObjectClient(config, transport=transport, strategy=FixedStrategy(buffer=True))
