class SimpleS3Error(Exception):
    """Base class for every error raised by simples3."""


class InvalidArgumentError(SimpleS3Error, ValueError):
    def __init__(self, name: str, expected: str, received: object):
        self.name = name
        self.expected = expected
        self.received = received

    def __str__(self):
        return (
            f"Invalid {self.name}; expected {self.expected}, "
            f"received {type(self.received).__name__}"
        )


class InvalidSourceError(SimpleS3Error):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason

    def __str__(self):
        return f"Invalid upload source '{self.path}': {self.reason}"


class InvalidDestinationError(SimpleS3Error):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason

    def __str__(self):
        return f"Invalid download destination '{self.path}': {self.reason}"


class NotFoundError(SimpleS3Error, LookupError):
    def __init__(self, bucket: str, key: str):
        self.bucket = bucket
        self.key = key

    def __str__(self):
        return f"Object '{self.key}' not found in bucket '{self.bucket}'"


class IntegrityMismatchError(SimpleS3Error):
    def __init__(self, key: str, path: str, expected: str, actual: str):
        self.key = key
        self.path = path
        self.expected = expected
        self.actual = actual

    def __str__(self):
        return (
            f"Invalid checksum of '{self.key}' downloaded to '{self.path}': "
            f"expected {self.expected}, got {self.actual}"
        )


class TransportError(SimpleS3Error):
    def __init__(
        self,
        status: int | None,
        reason: str,
        context: str,
        code: str | None = None,
    ):
        self.status = status
        self.reason = reason
        self.context = context
        self.code = code

    def __str__(self):
        status = "network error" if self.status is None else self.status
        code = f" [{self.code}]" if self.code else ""
        return f"Transport error '{status} {self.reason}'{code}. Context: {self.context}"


class PartialMoveError(TransportError):
    """The copy step of a move succeeded but removing the source failed.

    The object now exists under both keys; cleaning up is left to the caller.
    """

    def __init__(self, source_key: str, dest_key: str, cause: TransportError):
        super().__init__(
            status=cause.status,
            reason=cause.reason,
            context=cause.context,
            code=cause.code,
        )
        self.source_key = source_key
        self.dest_key = dest_key

    def __str__(self):
        return (
            f"Copied '{self.source_key}' to '{self.dest_key}' but could not remove "
            f"'{self.source_key}' ({self.status} {self.reason}); "
            "the object exists under both keys"
        )


class NotConnectedError(SimpleS3Error):
    def __str__(self):
        return "Client is not connected; call connect() or use 'async with'"
