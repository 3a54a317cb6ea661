from typing import Callable, Protocol

import psutil

from .enums import TransferMode


class TransferStrategy(Protocol):
    def should_buffer(self, size_bytes: int) -> bool: ...


def available_memory() -> int:
    return psutil.virtual_memory().available


class FreeMemoryStrategy:
    """Buffer a file when it is smaller than the memory free right now.

    This is a heuristic checked once per upload. Buffering lets the upload carry
    a `Content-MD5` digest; streaming keeps memory bounded but sends none.
    """

    def __init__(self, free_memory: Callable[[], int] = available_memory):
        self._free_memory = free_memory

    def should_buffer(self, size_bytes: int) -> bool:
        return size_bytes < self._free_memory()


class FixedStrategy:
    def __init__(self, buffer: bool):
        self.buffer = buffer

    def should_buffer(self, size_bytes: int) -> bool:
        return self.buffer


def select_mode(strategy: TransferStrategy, size_bytes: int) -> TransferMode:
    if strategy.should_buffer(size_bytes):
        return TransferMode.BUFFERED
    return TransferMode.STREAMED
