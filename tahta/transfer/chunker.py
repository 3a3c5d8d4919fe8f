"""
Payload Chunker

Design Decision: Chunk Size
===========================

Options Considered:
| Size    | Pros                              | Cons                                  |
|---------|-----------------------------------|---------------------------------------|
| 16KB    | Works with every SCTP stack       | Many messages, slow on large photos   |
| 64KB    | Accepted by all current browsers  | -                                     |
| 256KB   | Fewer messages                    | Rejected by some browser peers        |

Decision: 64KB (65,536 bytes)
- Largest size every browser board accepts as a single data channel message
- A 3MB photo is ~47 messages, progress still looks smooth
- Fixed size, so the receiver can check the count announced in the header

Chunks carry no sequence number: the data channel is ordered, so chunk i is
simply the i-th binary message after the header.
"""

import math
from pathlib import Path
from typing import Iterator, Tuple, Union

import aiofiles

# Chunk size: 64KB
CHUNK_SIZE = 64 * 1024  # 65,536 bytes


def get_chunk_count(total_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Number of chunks for a payload of given size: ceil(total_size / chunk_size)."""
    if total_size < 0:
        raise ValueError(f"Negative payload size: {total_size}")
    return math.ceil(total_size / chunk_size)


def get_chunk_bounds(chunk_index: int, total_size: int,
                     chunk_size: int = CHUNK_SIZE) -> Tuple[int, int]:
    """
    Get byte range for a specific chunk.

    Returns:
        (start_offset, length) tuple
    """
    start = chunk_index * chunk_size
    length = min(chunk_size, total_size - start)
    return start, length


def iter_chunks(payload: Union[bytes, bytearray, memoryview],
                chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """
    Split a payload into consecutive chunks.

    Yields:
        chunk bytes, all of chunk_size except possibly the last
    """
    view = memoryview(payload)
    total_size = len(view)
    for chunk_index in range(get_chunk_count(total_size, chunk_size)):
        start, length = get_chunk_bounds(chunk_index, total_size, chunk_size)
        yield bytes(view[start:start + length])


async def read_payload(file_path: Path) -> bytes:
    """Read a whole file to send it."""
    async with aiofiles.open(file_path, 'rb') as f:
        return await f.read()


async def write_payload(file_path: Path, payload: bytes):
    """Write a received payload to disk."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(file_path, 'wb') as f:
        await f.write(payload)


if __name__ == "__main__":
    import sys
    import asyncio

    async def main():
        if len(sys.argv) < 2:
            print("Usage: python -m tahta.transfer.chunker <file_path>")
            return

        file_path = Path(sys.argv[1])
        if not file_path.exists():
            print(f"File not found: {file_path}")
            return

        payload = await read_payload(file_path)
        print(f"File: {file_path.name}")
        print(f"Size: {len(payload):,} bytes")
        print(f"Chunks: {get_chunk_count(len(payload))}")

    asyncio.run(main())
