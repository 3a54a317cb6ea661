import os
import posixpath
import stat
import tempfile
from contextlib import (AsyncExitStack, asynccontextmanager, contextmanager,
                        suppress)
from typing import AsyncIterable, AsyncIterator, Dict, Tuple

import aiofiles
import aiofiles.os
from structlog import get_logger

from simples3.config import ClientConfig
from simples3.enums import TransferMode
from simples3.exceptions import (InvalidArgumentError, InvalidDestinationError,
                                 InvalidSourceError, NotFoundError,
                                 PartialMoveError, TransportError)
from simples3.integrity import IntegrityVerifier, canonical_digest
from simples3.strategy import (FreeMemoryStrategy, TransferStrategy,
                               select_mode)

from .models import ListingEntry, ListingPage, ObjectHead, TransferResult
from .transport import S3Transport, Transport

logger = get_logger()

MAX_PAGE_SIZE = 1000
CHUNK_SIZE = 64 * 1024


def normalize_key(key: str, name: str = "key", *, allow_empty: bool = False) -> str:
    """Collapse `key` to a canonical object key.

    Dot segments and repeated slashes are resolved, leading slashes are dropped
    and a trailing slash is kept so that directory-style prefixes survive. Keys
    that climb above the bucket root (`../a`) are rejected.
    """
    if not isinstance(key, str):
        raise InvalidArgumentError(f"{name} param", "string", key)

    normalized = posixpath.normpath(key).lstrip("/") if key else ""
    if normalized == ".":
        normalized = ""
    if normalized == ".." or normalized.startswith("../"):
        raise InvalidArgumentError(f"{name} param", "key inside the bucket", key)
    if normalized and key.endswith("/"):
        normalized += "/"

    if not normalized and not allow_empty:
        raise InvalidArgumentError(f"{name} param", "non-empty key", key)

    return normalized


def _check_path(value, name: str) -> str:
    if not isinstance(value, (str, os.PathLike)):
        raise InvalidArgumentError(f"{name} param", "path", value)
    return os.path.abspath(os.fspath(value))


COPY_RESERVED_HEADERS = ("x-amz-copy-source", "x-amz-metadata-directive")


def _check_copy_headers(headers) -> Dict[str, str] | None:
    if headers is None:
        return None
    if not isinstance(headers, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
    ):
        raise InvalidArgumentError("headers option", "dict of strings", headers)
    for name in headers:
        if name.lower() in COPY_RESERVED_HEADERS:
            raise InvalidArgumentError(
                "headers option", f"headers other than {name.lower()}", headers
            )
    return dict(headers)


async def _iter_file(f, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    while chunk := await f.read(chunk_size):
        yield chunk


class ObjectClient:
    """File-like operations on the objects of a single bucket.

    Every operation is a coroutine. Arguments are validated before any I/O and
    failures are raised as subclasses of `SimpleS3Error`. Nothing is retried.

    ```
    async with ObjectClient(bucket="assets", access_key_id=..., secret_access_key=...) as s3:
        await s3.upload("soon.jpg", "images/soon.jpg")
        page = await s3.list("images/")
    ```
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        strategy: TransferStrategy | None = None,
        verifier: IntegrityVerifier | None = None,
        **options,
    ):
        if config is None:
            config = ClientConfig(**options)
        elif not isinstance(config, ClientConfig):
            raise InvalidArgumentError("config param", "ClientConfig", config)
        elif options:
            raise InvalidArgumentError(
                "options", "either a ClientConfig or keyword options", options
            )

        self.config = config
        self.bucket = config.bucket
        self.transport = transport if transport is not None else S3Transport(config)
        self.strategy = strategy if strategy is not None else FreeMemoryStrategy()
        self.verifier = verifier if verifier is not None else IntegrityVerifier()

    async def connect(self):
        await self.transport.connect()

    async def disconnect(self):
        await self.transport.disconnect()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *exc_info):
        await self.disconnect()

    @contextmanager
    def _not_found_as(self, key: str):
        try:
            yield
        except TransportError as exc:
            if exc.status == 404:
                raise NotFoundError(self.bucket, key) from exc
            raise

    async def head(self, key: str) -> ObjectHead:
        key = normalize_key(key)
        with self._not_found_as(key):
            return await self.transport.head_object(self.bucket, key)

    @asynccontextmanager
    async def open_stream(self, key: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """Stream an object's bytes; the response is released when the block exits."""
        key = normalize_key(key)
        async with AsyncExitStack() as stack:
            with self._not_found_as(key):
                chunks = await stack.enter_async_context(
                    self.transport.get_object_stream(self.bucket, key)
                )
            yield chunks

    async def read_bytes(self, key: str) -> bytes:
        async with self.open_stream(key) as chunks:
            return b"".join([chunk async for chunk in chunks])

    async def write(
        self,
        key: str,
        contents: bytes | str | AsyncIterable[bytes],
        *,
        content_length: int | None = None,
    ) -> TransferResult:
        """Write `contents` to `key`.

        `bytes` and `str` bodies are sent with a `Content-MD5` digest so the store
        rejects a corrupted transmission. Async iterables are streamed without a
        digest; pass `content_length` when the store requires one.
        """
        key = normalize_key(key)

        if isinstance(contents, str):
            contents = contents.encode("utf-8")

        if isinstance(contents, (bytes, bytearray)):
            data = bytes(contents)
            etag = await self.transport.put_object(
                self.bucket, key, data, content_md5=self.verifier.content_md5(data)
            )
            return TransferResult(
                key=key, bytes_transferred=len(data), etag=canonical_digest(etag) or None
            )

        if not hasattr(contents, "__aiter__"):
            raise InvalidArgumentError(
                "contents param", "bytes, string or async iterable of bytes", contents
            )

        sent = 0

        async def counted() -> AsyncIterator[bytes]:
            nonlocal sent
            async for chunk in contents:
                sent += len(chunk)
                yield chunk

        etag = await self.transport.put_object(
            self.bucket, key, counted(), content_length=content_length
        )
        return TransferResult(
            key=key, bytes_transferred=sent, etag=canonical_digest(etag) or None
        )

    async def upload(self, local_path: str, remote_key: str | None = None) -> TransferResult:
        """Upload a regular file, defaulting the key to the file's basename.

        Files smaller than the strategy's threshold are read into memory and sent
        with a `Content-MD5` digest. Larger files are streamed and are NOT
        integrity checked on write.
        """
        source = _check_path(local_path, "local_path")
        key = normalize_key(
            os.path.basename(source) if remote_key is None else remote_key, "remote_key"
        )

        try:
            st = await aiofiles.os.stat(source)
        except FileNotFoundError as exc:
            raise InvalidSourceError(source, "no such file") from exc
        if not stat.S_ISREG(st.st_mode):
            raise InvalidSourceError(source, "you must reference a file")

        mode = select_mode(self.strategy, st.st_size)
        logger.debug("Selected transfer mode", key=key, size=st.st_size, mode=mode.value)

        async with aiofiles.open(source, "rb") as f:
            if mode is TransferMode.BUFFERED:
                data = await f.read()
                size = len(data)
                etag = await self.transport.put_object(
                    self.bucket, key, data, content_md5=self.verifier.content_md5(data)
                )
            else:
                size = st.st_size
                etag = await self.transport.put_object(
                    self.bucket, key, _iter_file(f), content_length=size
                )

        logger.info("Uploaded object", key=key, path=source, size=size, mode=mode.value)
        return TransferResult(
            key=key,
            bytes_transferred=size,
            etag=canonical_digest(etag) or None,
            path=source,
        )

    async def _resolve_destination(self, destination: str, key: str) -> str:
        try:
            st = await aiofiles.os.stat(destination)
        except FileNotFoundError:
            if not await aiofiles.os.path.isdir(os.path.dirname(destination)):
                raise InvalidDestinationError(
                    destination, "parent directory does not exist"
                ) from None
            return destination

        if stat.S_ISDIR(st.st_mode):
            name = posixpath.basename(key)
            if not name:
                raise InvalidDestinationError(
                    destination, f"cannot derive a file name from key '{key}'"
                )
            target = os.path.join(destination, name)
            try:
                target_st = await aiofiles.os.stat(target)
            except FileNotFoundError:
                return target
            if not stat.S_ISREG(target_st.st_mode):
                raise InvalidDestinationError(target, "not a regular file")
            return target
        if stat.S_ISREG(st.st_mode):
            return destination

        raise InvalidDestinationError(destination, "expected directory or file")

    async def _discard(self, path: str):
        with suppress(FileNotFoundError):
            await aiofiles.os.remove(path)

    async def download(self, remote_key: str, destination: str | None = None) -> TransferResult:
        """Download an object and verify it against the store's ETag.

        `destination` may be a directory (the key's basename is used), a file to
        overwrite, or a new file path. It defaults to the temp directory. On a
        digest mismatch the file is deleted and `IntegrityMismatchError` raised.
        """
        key = normalize_key(remote_key, "remote_key")
        destination = tempfile.gettempdir() if destination is None else destination
        target = await self._resolve_destination(
            _check_path(destination, "destination"), key
        )

        written = 0
        opened = False
        try:
            async with self.open_stream(key) as chunks:
                async with aiofiles.open(target, "wb") as f:
                    opened = True
                    async for chunk in chunks:
                        await f.write(chunk)
                        written += len(chunk)

            head = await self.head(key)
            await self.verifier.verify_file(target, key=key, etag=head.etag)
        except BaseException:
            if opened:
                await self._discard(target)
            raise

        logger.info("Downloaded object", key=key, path=target, size=written)
        return TransferResult(
            key=key,
            bytes_transferred=written,
            last_modified=head.last_modified,
            etag=canonical_digest(head.etag) or None,
            path=target,
        )

    async def list(
        self,
        prefix: str = "",
        *,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> ListingPage:
        """List one page of objects under `prefix` in store order.

        Without a cursor the listing starts after `prefix` itself, so a
        directory placeholder object named exactly `prefix` is never returned.
        """
        prefix = normalize_key(prefix, "prefix", allow_empty=True)
        if cursor is not None and not isinstance(cursor, str):
            raise InvalidArgumentError("cursor option", "string", cursor)
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int):
                raise InvalidArgumentError("limit option", "integer", limit)
            if not 1 <= limit <= MAX_PAGE_SIZE:
                raise InvalidArgumentError(
                    "limit option", f"integer between 1 and {MAX_PAGE_SIZE}", limit
                )

        res = await self.transport.list_objects(
            self.bucket,
            prefix=prefix or None,
            marker=cursor or prefix or None,
            max_keys=limit,
        )

        entries: Tuple[ListingEntry, ...] = tuple(
            ListingEntry(
                key=obj.key,
                size_bytes=obj.size,
                last_modified=obj.last_modified,
                etag=obj.etag or None,
            )
            for obj in res.objects
        )

        next_cursor = None
        if res.is_truncated and entries:
            next_cursor = res.next_marker or entries[-1].key

        return ListingPage(entries=entries, cursor=next_cursor)

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        *,
        headers: Dict[str, str] | None = None,
    ) -> TransferResult:
        """Server-side copy; metadata is copied verbatim and no bytes pass through.

        `headers` are extra request headers for the store, e.g. `x-amz-acl` or
        `x-amz-storage-class`. The copy source and metadata directive are fixed.
        """
        source_key = normalize_key(source_key, "source_key")
        dest_key = normalize_key(dest_key, "dest_key")
        headers = _check_copy_headers(headers)

        with self._not_found_as(source_key):
            res = await self.transport.copy_object(
                self.bucket,
                dest_key,
                source_bucket=self.bucket,
                source_key=source_key,
                metadata_directive="COPY",
                extra_headers=headers,
            )

        logger.info("Copied object", source_key=source_key, dest_key=dest_key)
        return TransferResult(
            key=dest_key,
            bytes_transferred=0,
            last_modified=res.last_modified,
            etag=canonical_digest(res.etag) or None,
        )

    async def remove(self, key: str) -> None:
        """Delete `key`. Deleting a missing key succeeds."""
        key = normalize_key(key)

        try:
            await self.transport.delete_object(self.bucket, key)
        except TransportError as exc:
            if exc.status != 404:
                raise
            logger.debug("Object already absent", key=key)
            return

        logger.info("Removed object", key=key)

    async def move(
        self,
        source_key: str,
        dest_key: str,
        *,
        headers: Dict[str, str] | None = None,
    ) -> TransferResult:
        """Copy `source_key` to `dest_key`, then remove the source.

        Not atomic. If the copy fails nothing is removed. If the removal fails the
        object is left under both keys and `PartialMoveError` is raised; no
        rollback is attempted. `headers` are passed to the copy.
        """
        source_key = normalize_key(source_key, "source_key")
        dest_key = normalize_key(dest_key, "dest_key")

        result = await self.copy(source_key, dest_key, headers=headers)

        try:
            await self.remove(source_key)
        except TransportError as exc:
            logger.error(
                "Move left object under both keys",
                source_key=source_key,
                dest_key=dest_key,
                status_code=exc.status,
            )
            raise PartialMoveError(source_key, dest_key, exc) from exc

        return result

    rename = move
