"""
A standalone read-transform-write loop, for running an `Injector` (or any
other stream callable) between an asyncio reader and writer outside of
mitmproxy, e.g. behind a plain `asyncio.start_server` handler.
"""
import asyncio
import logging
from collections.abc import Callable
from collections.abc import Iterable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65535


async def pump(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    transform: Callable[[bytes], bytes | Iterable[bytes]],
    *,
    chunk_size: int = CHUNK_SIZE,
) -> None:
    """
    Copy a body from reader to writer, passing every chunk through transform.

    transform is called with each chunk as it arrives and once with b"" when
    the reader is exhausted, i.e. it can be an `Injector`. Like
    `mitmproxy.http.Message.stream`, it may return bytes or an iterable of
    bytes. Each write is drained before the next read. A connection error on
    either side ends the copy. The writer is closed in any case, including
    cancellation.
    """
    try:
        while True:
            data = await reader.read(chunk_size)
            out = transform(data)
            if isinstance(out, bytes):
                out = [out]
            for chunk in out:
                if chunk:
                    writer.write(chunk)
                    await writer.drain()
            if not data:
                break
    except OSError as e:
        logger.debug(f"Body stream interrupted: {e}")
    finally:
        try:
            writer.close()
            await writer.wait_closed()
        except OSError:
            pass
