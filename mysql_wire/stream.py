from __future__ import annotations

import asyncio
import logging
import struct
import time
import zlib
from ssl import SSLContext
from typing import Optional

from mysql_wire.constants import MAX_FRAME_SIZE, MIN_COMPRESS_LENGTH
from mysql_wire.errors import (
    ConnectionClosed,
    ErrorCode,
    PacketTooLargeError,
    ProtocolDesyncError,
    ReadTimeout,
    TransportError,
)
from mysql_wire.types import uint_3, uint_1
from mysql_wire.utils import seq

logger = logging.getLogger(__name__)


class MysqlStream:
    """
    Frames payloads into mysql packets over an asyncio stream pair.

    Every frame carries a 3 byte length and a 1 byte sequence number.
    Payloads of MAX_FRAME_SIZE bytes or more are split across frames, and a frame of
    exactly MAX_FRAME_SIZE bytes is always followed by another (possibly empty) one.
    """

    # Check the sequence byte of every inbound frame
    strict_seq = True

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        buffer_size: int = 2**15,
        max_packet_size: int = 2**30,
    ):
        self.reader = reader
        self.writer = writer
        self.seq = seq(256)
        self.max_packet_size = max_packet_size
        self._buffer = bytearray()
        self._buffer_size = buffer_size
        self._deadline: Optional[float] = None

    def reset_timeout(self, milliseconds: float) -> None:
        """Start a new read deadline. 0 disables it."""
        if milliseconds > 0:
            self._deadline = time.monotonic() + milliseconds / 1000
        else:
            self._deadline = None

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0)

    async def _recv(self, n: int) -> bytes:
        if n == 0:
            return b""
        try:
            return await asyncio.wait_for(
                self.reader.readexactly(n), timeout=self._remaining()
            )
        except asyncio.TimeoutError:
            raise ReadTimeout() from None
        except asyncio.IncompleteReadError as e:
            raise ConnectionClosed() from e
        except OSError as e:
            raise TransportError(str(e)) from e

    async def _recv_frame(self) -> bytes:
        header = await self._recv(4)
        i = struct.unpack("<I", header)[0]
        payload_length = i & 0x00FFFFFF
        sequence_id = (i & 0xFF000000) >> 24

        expected = next(self.seq)
        if sequence_id != expected:
            if self.strict_seq:
                raise ProtocolDesyncError(
                    f"Expected seq({expected}) got seq({sequence_id})"
                )
            self.seq.reset((sequence_id + 1) % 256)

        return await self._recv(payload_length)

    async def read(self) -> bytes:
        """Read one logical packet, reassembling split frames"""
        data = b""
        while True:
            payload = await self._recv_frame()
            data += payload
            if len(payload) < MAX_FRAME_SIZE:
                return data

    async def write(self, data: bytes, drain: bool = True) -> None:
        if len(data) > self.max_packet_size:
            raise PacketTooLargeError(len(data), self.max_packet_size)

        while True:
            # Grab first MAX_FRAME_SIZE bytes to send
            payload = data[:MAX_FRAME_SIZE]
            data = data[MAX_FRAME_SIZE:]

            payload_length = uint_3(len(payload))
            sequence_id = uint_1(next(self.seq))
            packet = payload_length + sequence_id + payload

            self._buffer.extend(packet)
            if drain or len(self._buffer) >= self._buffer_size:
                await self.drain()

            # We are done unless len(payload) == MAX_FRAME_SIZE
            if len(payload) != MAX_FRAME_SIZE:
                return

    async def write_empty(self) -> None:
        await self.write(b"")

    async def drain(self) -> None:
        await self._send(bytes(self._buffer))
        self._buffer.clear()

    async def _send(self, data: bytes) -> None:
        try:
            if data:
                self.writer.write(data)
            await self.writer.drain()
        except OSError as e:
            raise TransportError(str(e)) from e

    def reset_seq(self, value: int = 0) -> None:
        self.seq.reset(value)

    async def start_tls(self, ssl: SSLContext, server_hostname: Optional[str]) -> None:
        """Upgrade the underlying transport in place"""
        transport = self.writer.transport
        protocol = transport.get_protocol()
        loop = asyncio.get_event_loop()
        try:
            new_transport = await asyncio.wait_for(
                loop.start_tls(
                    transport=transport,
                    protocol=protocol,
                    sslcontext=ssl,
                    server_side=False,
                    server_hostname=server_hostname,
                ),
                timeout=self._remaining(),
            )
        except asyncio.TimeoutError:
            raise ReadTimeout("Timeout expired during the TLS handshake") from None
        except OSError as e:
            raise TransportError(
                f"SSL connection error: {e}", ErrorCode.SSL_CONNECTION_ERROR
            ) from e

        # This seems to be the easiest way to wrap the socket created by asyncio
        self.writer._transport = new_transport  # type: ignore # pylint: disable=protected-access
        self.reader._transport = new_transport  # type: ignore # pylint: disable=protected-access

    def with_compression(self) -> CompressedMysqlStream:
        stream = CompressedMysqlStream(
            reader=self.reader,
            writer=self.writer,
            buffer_size=self._buffer_size,
            max_packet_size=self.max_packet_size,
        )
        stream.seq.reset(self.seq.value)
        stream._deadline = self._deadline  # pylint: disable=protected-access
        return stream

    def without_compression(self) -> MysqlStream:
        return self

    def close(self) -> None:
        self.writer.close()


class CompressedMysqlStream(MysqlStream):
    """
    Wraps packets in zlib compressed frames.

    A compressed frame has a 7 byte header: compressed length (3 bytes), compressed sequence
    number (1 byte) and uncompressed length (3 bytes). An uncompressed length of 0 means the
    frame body was sent as-is.
    """

    # Servers renumber packets inside compressed frames, so follow them
    strict_seq = False

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        buffer_size: int = 2**15,
        max_packet_size: int = 2**30,
    ):
        super().__init__(reader, writer, buffer_size, max_packet_size)
        self.compressed_seq = seq(256)
        self._inbound = bytearray()

    def reset_seq(self, value: int = 0) -> None:
        super().reset_seq(value)
        self.compressed_seq.reset()

    async def _recv_compressed_frame(self) -> None:
        header = await super()._recv(7)
        compressed_length = header[0] | header[1] << 8 | header[2] << 16
        sequence_id = header[3]
        uncompressed_length = header[4] | header[5] << 8 | header[6] << 16

        expected = next(self.compressed_seq)
        if sequence_id != expected:
            raise ProtocolDesyncError(
                f"Expected compressed seq({expected}) got seq({sequence_id})"
            )

        body = await super()._recv(compressed_length)
        if uncompressed_length == 0:
            self._inbound.extend(body)
            return

        try:
            data = zlib.decompress(body)
        except zlib.error as e:
            raise ProtocolDesyncError(f"Bad compressed frame: {e}") from e
        if len(data) != uncompressed_length:
            raise ProtocolDesyncError(
                f"Compressed frame expanded to {len(data)} bytes, expected {uncompressed_length}"
            )
        self._inbound.extend(data)

    async def _recv(self, n: int) -> bytes:
        while len(self._inbound) < n:
            await self._recv_compressed_frame()
        data = bytes(self._inbound[:n])
        del self._inbound[:n]
        return data

    async def drain(self) -> None:
        data = bytes(self._buffer)
        self._buffer.clear()
        frames = bytearray()
        while data:
            chunk = data[:MAX_FRAME_SIZE]
            data = data[MAX_FRAME_SIZE:]
            frames.extend(self._compress_frame(chunk))
        await self._send(bytes(frames))

    def _compress_frame(self, chunk: bytes) -> bytes:
        sequence_id = uint_1(next(self.compressed_seq))
        if len(chunk) < MIN_COMPRESS_LENGTH:
            return uint_3(len(chunk)) + sequence_id + uint_3(0) + chunk

        body = zlib.compress(chunk)
        return uint_3(len(body)) + sequence_id + uint_3(len(chunk)) + body

    def with_compression(self) -> CompressedMysqlStream:
        return self

    def without_compression(self) -> MysqlStream:
        stream = MysqlStream(
            reader=self.reader,
            writer=self.writer,
            buffer_size=self._buffer_size,
            max_packet_size=self.max_packet_size,
        )
        stream.seq.reset(self.seq.value)
        stream._deadline = self._deadline  # pylint: disable=protected-access
        return stream
