"""
Helpers shared by the storage services.
"""
import asyncio
import gzip
import io
from typing import BinaryIO


async def read_stream(stream: BinaryIO) -> bytes:
    """Read a provider stream fully and close it."""
    try:
        return stream.read()
    finally:
        stream.close()


async def compress(data: bytes) -> bytes:
    """Gzip ``data`` off the event loop."""
    return await asyncio.to_thread(gzip.compress, data)


async def decompress(data: bytes) -> bytes:
    """Gunzip ``data`` off the event loop."""
    return await asyncio.to_thread(gzip.decompress, data)


def as_stream(data: bytes) -> BinaryIO:
    return io.BytesIO(data)
