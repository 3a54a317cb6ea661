from dataclasses import dataclass

from .exceptions import InvalidArgumentError


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for a single bucket.

    Every field is validated when the config is built, so a malformed value
    fails at construction rather than on the first request.

    `endpoint` is an optional `host[:port]` of an S3-compatible service. When it
    is set requests use path-style addressing (`/<bucket>/<key>`), otherwise
    virtual-hosted AWS addressing (`<bucket>.s3.<region>.amazonaws.com`).
    """

    bucket: str
    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    tls_enabled: bool = True
    endpoint: str | None = None

    def __post_init__(self):
        for name in ("bucket", "access_key_id", "secret_access_key", "region"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise InvalidArgumentError(f"{name} option", "string", value)
            if not value:
                raise InvalidArgumentError(f"{name} option", "non-empty string", value)

        if "/" in self.bucket:
            raise InvalidArgumentError("bucket option", "name without '/'", self.bucket)

        # bool is checked by identity so that 0 and 1 are rejected
        if self.tls_enabled is not True and self.tls_enabled is not False:
            raise InvalidArgumentError("tls_enabled option", "boolean", self.tls_enabled)

        if self.endpoint is not None:
            if not isinstance(self.endpoint, str) or not self.endpoint:
                raise InvalidArgumentError("endpoint option", "host string", self.endpoint)
            if "://" in self.endpoint or "/" in self.endpoint:
                raise InvalidArgumentError(
                    "endpoint option", "bare host without scheme or path", self.endpoint
                )

    @property
    def scheme(self) -> str:
        return "https" if self.tls_enabled else "http"

    @property
    def host(self) -> str:
        return self.endpoint or f"s3.{self.region}.amazonaws.com"

    @property
    def path_style(self) -> bool:
        return self.endpoint is not None
