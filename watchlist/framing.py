"""
framing.py - length-prefixed frames for asyncio streams.

Protocol (simple on purpose):
- Each message = 4-byte little-endian unsigned length (N) + N bytes of payload.
- The payload is one request/response line in UTF-8, no trailing newline.
- Frames bigger than the agreed maximum are refused in both directions, so a
  buggy peer cannot make us allocate silly amounts of memory.

A TLS stream has no message boundaries of its own; the prefix is what makes
"one send, one receive" hold on the far side.
"""

import asyncio
import struct

DEFAULT_MAX_FRAME = 800  # bytes per frame unless configured
LENGTH_STRUCT = struct.Struct("<I")  # little-endian unsigned 32-bit length


async def read_frame(reader: asyncio.StreamReader, max_size: int = DEFAULT_MAX_FRAME) -> bytes:
    """
    Read one frame and return its payload.

    Raises:
        asyncio.IncompleteReadError: the peer closed mid-frame.
        ValueError: the announced length is above `max_size`.
    """
    len_bytes = await reader.readexactly(LENGTH_STRUCT.size)
    (length,) = LENGTH_STRUCT.unpack(len_bytes)

    # Check before allocating/reading the body.
    if length > max_size:
        raise ValueError(f"Frame too large: {length} > {max_size}")

    return await reader.readexactly(length)


async def write_frame(writer: asyncio.StreamWriter, payload: bytes,
                      max_size: int = DEFAULT_MAX_FRAME) -> None:
    """Write one framed payload and wait for the transport to take it."""
    if len(payload) > max_size:
        raise ValueError(f"Frame exceeds maximum size: {len(payload)} > {max_size}")

    writer.write(LENGTH_STRUCT.pack(len(payload)))
    writer.write(payload)
    await writer.drain()  # Let the transport flush; important under backpressure.
