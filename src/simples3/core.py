import urllib.parse as urllib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict

from httpx import AsyncBaseTransport, AsyncClient, HTTPError, Request, Response
from structlog import get_logger

from .auth import get_hash, get_signature, get_signature_key
from .enums import Service
from .exceptions import NotConnectedError, TransportError

logger = get_logger()

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"


class AwsClient:
    def __init__(
        self,
        *,
        access_key: str,
        secret_key: str,
        region: str,
        service: Service,
        host: str,
        scheme: str = "https",
        http_transport: AsyncBaseTransport | None = None,
    ):
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service
        self.host = host
        self.scheme = scheme

        self._http_transport = http_transport
        self._httpx = None

    @property
    def connected(self) -> bool:
        return self._httpx is not None

    async def connect(self):
        assert self._httpx is None, "AwsClient already connected"
        self._httpx = AsyncClient(timeout=None, transport=self._http_transport)

    async def disconnect(self):
        assert self._httpx is not None, "AwsClient is not connected"
        await self._httpx.aclose()
        self._httpx = None

    def _build_request(
        self,
        *,
        method: str,
        host: str | None = None,
        endpoint: str = "/",
        params: Dict | None = None,
        extra_headers: Dict | None = None,
        data: bytes | AsyncIterator[bytes] | None = None,
    ) -> Request:
        if self._httpx is None:
            raise NotConnectedError()

        host = host or self.host

        utcnow = datetime.now(timezone.utc)
        amz_date = utcnow.strftime("%Y%m%dT%H%M%SZ")
        datestamp = utcnow.strftime("%Y%m%d")

        canonical_uri = urllib.quote(endpoint, safe="/~")

        canonical_querystring_parts = []
        if params:
            for k, v in params.items():
                if v is None:
                    continue
                key_querystring = urllib.quote(str(k), safe="-_.~")
                value_querystring = urllib.quote(str(v), safe="-_.~")
                canonical_querystring_parts.append(f"{key_querystring}={value_querystring}")
        canonical_querystring = "&".join(sorted(canonical_querystring_parts))

        # streamed bodies cannot be hashed up front
        if data is None or isinstance(data, bytes):
            payload_hash = get_hash(b"" if data is None else data)
        else:
            payload_hash = UNSIGNED_PAYLOAD

        headers = {
            "host": host,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
        }
        if extra_headers:
            headers.update({k.lower(): str(v) for k, v in extra_headers.items()})

        signed_header_names = sorted(
            name
            for name in headers
            if name in ("host", "content-md5") or name.startswith("x-amz-")
        )
        canonical_headers = "".join(
            f"{name}:{headers[name].strip()}\n" for name in signed_header_names
        )
        signed_headers = ";".join(signed_header_names)

        canonical_request_parts = [
            method,
            canonical_uri,
            canonical_querystring,
            canonical_headers,
            signed_headers,
            payload_hash,
        ]
        canonical_request = "\n".join(canonical_request_parts)
        hashed_canonical_request = get_hash(canonical_request)

        algorithm = "AWS4-HMAC-SHA256"
        credential_scope = (
            f"{datestamp}/{self.region}/{self.service.value}/aws4_request"
        )

        string_to_sign = (
            f"{algorithm}\n{amz_date}\n{credential_scope}\n{hashed_canonical_request}"
        )
        signature_key = get_signature_key(
            key=self.secret_key,
            datestamp=datestamp,
            region=self.region,
            service=self.service,
        )
        signature = get_signature(
            signature_key=signature_key, string_to_sign=string_to_sign
        )

        authorization_header_parts = [
            algorithm,
            f"Credential={self.access_key}/{credential_scope},",
            f"SignedHeaders={signed_headers},",
            f"Signature={signature}",
        ]
        headers["authorization"] = " ".join(authorization_header_parts)

        url = f"{self.scheme}://{host}{canonical_uri}"
        if canonical_querystring:
            url = f"{url}?{canonical_querystring}"

        return self._httpx.build_request(
            method=method,
            url=url,
            headers=headers,
            content=data,
        )

    async def _make_request(self, **kwargs) -> Response:
        request = self._build_request(**kwargs)
        try:
            res = await self._httpx.send(request)
        except HTTPError as exc:
            logger.error("HttpRequest failed", method=request.method, url=str(request.url), error=str(exc))
            raise TransportError(
                status=None, reason=type(exc).__name__, context=str(exc)
            ) from exc

        return res

    @asynccontextmanager
    async def _stream_request(self, **kwargs) -> AsyncIterator[Response]:
        request = self._build_request(**kwargs)
        try:
            res = await self._httpx.send(request, stream=True)
        except HTTPError as exc:
            logger.error("HttpRequest failed", method=request.method, url=str(request.url), error=str(exc))
            raise TransportError(
                status=None, reason=type(exc).__name__, context=str(exc)
            ) from exc

        try:
            yield res
        finally:
            await res.aclose()
