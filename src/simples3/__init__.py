from .config import ClientConfig
from .exceptions import (IntegrityMismatchError, InvalidArgumentError,
                         InvalidDestinationError, InvalidSourceError,
                         NotConnectedError, NotFoundError, PartialMoveError,
                         SimpleS3Error, TransportError)
from .integrity import IntegrityVerifier
from .s3.client import ObjectClient
from .s3.models import ListingEntry, ListingPage, ObjectHead, TransferResult
from .s3.transport import S3Transport, Transport
from .strategy import FixedStrategy, FreeMemoryStrategy, TransferStrategy

__all__ = [
    "ClientConfig",
    "FixedStrategy",
    "FreeMemoryStrategy",
    "IntegrityMismatchError",
    "IntegrityVerifier",
    "InvalidArgumentError",
    "InvalidDestinationError",
    "InvalidSourceError",
    "ListingEntry",
    "ListingPage",
    "NotConnectedError",
    "NotFoundError",
    "ObjectClient",
    "ObjectHead",
    "PartialMoveError",
    "S3Transport",
    "SimpleS3Error",
    "TransferResult",
    "TransferStrategy",
    "Transport",
]
