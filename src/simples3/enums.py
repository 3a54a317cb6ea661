from enum import Enum


class Service(Enum):
    S3 = "s3"


class TransferMode(Enum):
    BUFFERED = "buffered"
    STREAMED = "streamed"
