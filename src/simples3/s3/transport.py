from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import AsyncIterator, Dict, Protocol
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag
from httpx import AsyncBaseTransport, HTTPError, Response
from structlog import get_logger

from simples3.config import ClientConfig
from simples3.core import AwsClient
from simples3.enums import Service
from simples3.exceptions import TransportError

from .models import ObjectHead, S3CopyObjectRes, S3ListObjectsRes, S3Object

logger = get_logger()

META_HEADER_PREFIX = "x-amz-meta-"


class Transport(Protocol):
    """The six primitive object store calls.

    Implementations perform no validation and apply no policy. Every failure is
    raised as `TransportError`.
    """

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def get_object_stream(
        self, bucket: str, key: str
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]: ...

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes | AsyncIterator[bytes],
        *,
        content_md5: str | None = None,
        content_length: int | None = None,
    ) -> str | None: ...

    async def head_object(self, bucket: str, key: str) -> ObjectHead: ...

    async def list_objects(
        self,
        bucket: str,
        *,
        prefix: str | None = None,
        marker: str | None = None,
        max_keys: int | None = None,
    ) -> S3ListObjectsRes: ...

    async def copy_object(
        self,
        bucket: str,
        key: str,
        *,
        source_bucket: str,
        source_key: str,
        metadata_directive: str = "COPY",
        extra_headers: Dict[str, str] | None = None,
    ) -> S3CopyObjectRes: ...

    async def delete_object(self, bucket: str, key: str) -> None: ...


def parse_timestamp(value: str) -> datetime:
    for fmt in ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised timestamp '{value}'")


def _child_text(el: Tag, name: str) -> str | None:
    child = el.find(name)
    if not isinstance(child, Tag):
        return None
    return child.text


def _error_from_response(res: Response, context: str, body: bytes) -> TransportError:
    code = None
    message = res.reason_phrase
    if body:
        soup = BeautifulSoup(body.decode(errors="replace"), "xml")
        error_el = soup.find("Error")
        if isinstance(error_el, Tag):
            code = _child_text(error_el, "Code")
            message = _child_text(error_el, "Message") or message

    logger.error(
        "HttpRequest error",
        status_code=res.status_code,
        reason=res.reason_phrase,
        aws_code=code,
        aws_message=message,
        context=context,
    )
    return TransportError(
        status=res.status_code, reason=message, context=context, code=code
    )


class S3Transport(AwsClient):
    def __init__(
        self,
        config: ClientConfig,
        *,
        http_transport: AsyncBaseTransport | None = None,
    ):
        super().__init__(
            access_key=config.access_key_id,
            secret_key=config.secret_access_key,
            region=config.region,
            service=Service.S3,
            host=config.host,
            scheme=config.scheme,
            http_transport=http_transport,
        )
        self.path_style = config.path_style

    def _locate(self, bucket: str, key: str = "") -> tuple[str, str]:
        if self.path_style:
            return self.host, f"/{bucket}/{key}"
        return f"{bucket}.{self.host}", f"/{key}"

    @asynccontextmanager
    async def get_object_stream(self, bucket: str, key: str) -> AsyncIterator[AsyncIterator[bytes]]:
        host, endpoint = self._locate(bucket, key)
        context = f"GetObject {bucket}/{key}"

        async with self._stream_request(method="GET", host=host, endpoint=endpoint) as res:
            if not res.is_success:
                body = await res.aread()
                raise _error_from_response(res, context, body)

            async def chunks() -> AsyncIterator[bytes]:
                try:
                    async for chunk in res.aiter_bytes():
                        yield chunk
                except HTTPError as exc:
                    raise TransportError(
                        status=None, reason=type(exc).__name__, context=context
                    ) from exc

            yield chunks()

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes | AsyncIterator[bytes],
        *,
        content_md5: str | None = None,
        content_length: int | None = None,
    ) -> str | None:
        host, endpoint = self._locate(bucket, key)

        extra_headers = {}
        if content_md5 is not None:
            extra_headers["Content-MD5"] = content_md5
        if content_length is not None:
            extra_headers["Content-Length"] = content_length

        res = await self._make_request(
            method="PUT",
            host=host,
            endpoint=endpoint,
            extra_headers=extra_headers,
            data=body,
        )
        if not res.is_success:
            raise _error_from_response(res, f"PutObject {bucket}/{key}", res.content)

        return res.headers.get("ETag")

    async def head_object(self, bucket: str, key: str) -> ObjectHead:
        host, endpoint = self._locate(bucket, key)

        res = await self._make_request(method="HEAD", host=host, endpoint=endpoint)
        if not res.is_success:
            raise _error_from_response(res, f"HeadObject {bucket}/{key}", b"")

        last_modified = res.headers.get("Last-Modified")
        metadata = {
            name[len(META_HEADER_PREFIX):]: value
            for name, value in res.headers.items()
            if name.lower().startswith(META_HEADER_PREFIX)
        }

        return ObjectHead(
            key=key,
            size_bytes=int(res.headers.get("Content-Length", 0)),
            etag=res.headers.get("ETag"),
            last_modified=parsedate_to_datetime(last_modified) if last_modified else None,
            content_type=res.headers.get("Content-Type"),
            metadata=metadata,
        )

    async def list_objects(
        self,
        bucket: str,
        *,
        prefix: str | None = None,
        marker: str | None = None,
        max_keys: int | None = None,
    ) -> S3ListObjectsRes:
        host, endpoint = self._locate(bucket)

        res = await self._make_request(
            method="GET",
            host=host,
            endpoint=endpoint,
            params={"prefix": prefix, "marker": marker, "max-keys": max_keys},
        )
        if not res.is_success:
            raise _error_from_response(res, f"ListObjects {bucket}", res.content)

        soup = BeautifulSoup(res.content.decode(), "xml")

        s3_objects = []
        content_els = soup.find_all("Contents")
        for content_el in content_els:
            etag = _child_text(content_el, "ETag")
            s3_object = S3Object(
                key=content_el.Key.text,
                last_modified=parse_timestamp(content_el.LastModified.text),
                etag=etag.strip('"') if etag else "",
                size=int(content_el.Size.text),
                storage_class=_child_text(content_el, "StorageClass"),
            )
            s3_objects.append(s3_object)

        next_marker_el = soup.find("NextMarker")
        next_marker = None
        if isinstance(next_marker_el, Tag):
            next_marker = next_marker_el.text

        is_truncated = (_child_text(soup, "IsTruncated") or "false").lower() == "true"

        return S3ListObjectsRes(
            objects=s3_objects, is_truncated=is_truncated, next_marker=next_marker
        )

    async def copy_object(
        self,
        bucket: str,
        key: str,
        *,
        source_bucket: str,
        source_key: str,
        metadata_directive: str = "COPY",
        extra_headers: Dict[str, str] | None = None,
    ) -> S3CopyObjectRes:
        host, endpoint = self._locate(bucket, key)
        context = f"CopyObject {source_bucket}/{source_key} -> {bucket}/{key}"

        res = await self._make_request(
            method="PUT",
            host=host,
            endpoint=endpoint,
            extra_headers={
                **{k.lower(): v for k, v in (extra_headers or {}).items()},
                "x-amz-copy-source": quote(f"{source_bucket}/{source_key}", safe="/~"),
                "x-amz-metadata-directive": metadata_directive,
            },
        )
        if not res.is_success:
            raise _error_from_response(res, context, res.content)

        # a copy can fail after the 200 status line has been sent
        soup = BeautifulSoup(res.content.decode(), "xml")
        if isinstance(soup.find("Error"), Tag):
            raise _error_from_response(res, context, res.content)

        last_modified = _child_text(soup, "LastModified")
        return S3CopyObjectRes(
            etag=_child_text(soup, "ETag"),
            last_modified=parse_timestamp(last_modified) if last_modified else None,
        )

    async def delete_object(self, bucket: str, key: str) -> None:
        host, endpoint = self._locate(bucket, key)

        res = await self._make_request(method="DELETE", host=host, endpoint=endpoint)
        if not res.is_success:
            raise _error_from_response(res, f"DeleteObject {bucket}/{key}", res.content)
