"""Content digests used to check that bytes survived the trip to and from the store.

Downloads are verified after the fact: the MD5 of the file on disk must equal
the ETag the store reports for the key. Buffered uploads are verified by the
store itself, which rejects a body whose MD5 does not match the `Content-MD5`
header. Streamed uploads carry no digest and are not verified.
"""
from structlog import get_logger

from .auth import get_content_md5, get_file_hash
from .exceptions import IntegrityMismatchError

logger = get_logger()


def canonical_digest(etag: str | None) -> str:
    """Strip the quotes S3 wraps ETags in and lowercase the hex."""
    if etag is None:
        return ""
    return etag.strip().strip('"').lower()


class IntegrityVerifier:
    def __init__(self, *, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size

    def content_md5(self, data: bytes) -> str:
        return get_content_md5(data)

    async def file_digest(self, path: str) -> str:
        return await get_file_hash(path, algorithm="md5", chunk_size=self.chunk_size)

    async def verify_file(self, path: str, *, key: str, etag: str | None) -> str:
        """Return the hex digest of `path`, raising if it differs from `etag`."""
        expected = canonical_digest(etag)
        actual = await self.file_digest(path)

        if actual != expected:
            logger.warning(
                "Integrity check failed",
                key=key,
                path=path,
                expected=expected,
                actual=actual,
            )
            raise IntegrityMismatchError(
                key=key, path=path, expected=expected, actual=actual
            )

        return actual
