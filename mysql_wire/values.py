"""
Decoding of column values for the text and binary protocols, and encoding of prepared
statement parameters.
"""

from __future__ import annotations

import io
import struct
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Type

from mysql_wire.charset import CharacterSet
from mysql_wire.errors import MysqlError
from mysql_wire.types import (
    ColumnDefinition,
    ColumnType,
    read_double,
    read_field_length,
    read_float,
    read_int_1,
    read_int_2,
    read_int_4,
    read_int_8,
    read_str_fixed,
    read_uint_1,
    read_uint_2,
    read_uint_4,
    read_uint_8,
    str_len,
    uint_1,
    uint_2,
    uint_4,
    uint_8,
)


class ValueDecoder:
    """
    Decodes a single column value from a row packet.

    `length` is the length prefix read from a text protocol row, or -1 in the binary
    protocol, where the type determines how many bytes to read.
    """

    def __init__(
        self,
        flags: ColumnDefinition = ColumnDefinition(0),
        charset: Optional[CharacterSet] = None,
    ):
        self.flags = flags
        self.charset = charset

    @property
    def unsigned(self) -> bool:
        return ColumnDefinition.UNSIGNED_FLAG in self.flags

    def read_value(self, packet: io.BytesIO, length: int, is_null: bool) -> Any:
        if is_null:
            return None
        if length >= 0:
            return self.from_text(packet, read_str_fixed(packet, length))
        return self.read_binary(packet)

    def skip_value(self, packet: io.BytesIO) -> None:
        """Advance past a binary protocol value without decoding it"""
        self.read_binary(packet)

    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return data

    def read_binary(self, packet: io.BytesIO) -> Any:
        length = read_field_length(packet)
        if length < 0:
            return None
        return self.from_text(packet, read_str_fixed(packet, length))

    def _charset(self, packet: io.BytesIO) -> CharacterSet:
        return self.charset or getattr(packet, "charset", CharacterSet.utf8mb4)


class BytesDecoder(ValueDecoder):
    pass


class StringDecoder(ValueDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        charset = self._charset(packet)
        if charset is CharacterSet.binary:
            return data
        return charset.decode(data)


class JsonDecoder(ValueDecoder):
    # The server tags JSON as binary, but it's always utf8mb4
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return data.decode("utf8")


class DecimalDecoder(ValueDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return Decimal(data.decode("ascii"))


class BitDecoder(ValueDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return int.from_bytes(data, "big")


class IntegerDecoder(ValueDecoder):
    size = 8

    _READERS = {
        1: (read_int_1, read_uint_1),
        2: (read_int_2, read_uint_2),
        4: (read_int_4, read_uint_4),
        8: (read_int_8, read_uint_8),
    }

    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return int(data)

    def read_binary(self, packet: io.BytesIO) -> Any:
        signed, unsigned = self._READERS[self.size]
        return unsigned(packet) if self.unsigned else signed(packet)

    def skip_value(self, packet: io.BytesIO) -> None:
        read_str_fixed(packet, self.size)


class TinyDecoder(IntegerDecoder):
    size = 1


class ShortDecoder(IntegerDecoder):
    size = 2


class LongDecoder(IntegerDecoder):
    # INT24 is sent as 4 bytes too
    size = 4


class LongLongDecoder(IntegerDecoder):
    size = 8


class YearDecoder(IntegerDecoder):
    size = 2

    def read_binary(self, packet: io.BytesIO) -> Any:
        return read_uint_2(packet)


class FloatDecoder(ValueDecoder):
    size = 4
    reader = staticmethod(read_float)

    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        return float(data)

    def read_binary(self, packet: io.BytesIO) -> Any:
        return self.reader(packet)

    def skip_value(self, packet: io.BytesIO) -> None:
        read_str_fixed(packet, self.size)


class DoubleDecoder(FloatDecoder):
    size = 8
    reader = staticmethod(read_double)


class NullDecoder(ValueDecoder):
    def read_value(self, packet: io.BytesIO, length: int, is_null: bool) -> Any:
        if length > 0:
            read_str_fixed(packet, length)
        return None

    def skip_value(self, packet: io.BytesIO) -> None:
        return


class TemporalDecoder(ValueDecoder):
    """Binary temporal values are prefixed with a 1 byte length"""

    def skip_value(self, packet: io.BytesIO) -> None:
        read_str_fixed(packet, read_uint_1(packet))


class DateTimeDecoder(TemporalDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        text = data.decode("ascii")
        if text.startswith("0000-00-00"):
            return None
        for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        raise MysqlError(f"Invalid datetime value: {text}")

    def read_binary(self, packet: io.BytesIO) -> Any:
        length = read_uint_1(packet)
        if length == 0:
            return None
        year = read_uint_2(packet)
        month = read_uint_1(packet)
        day = read_uint_1(packet)
        hour = minute = second = microsecond = 0
        if length >= 7:
            hour = read_uint_1(packet)
            minute = read_uint_1(packet)
            second = read_uint_1(packet)
        if length >= 11:
            microsecond = read_uint_4(packet)
        if year == month == day == 0:
            return None
        return datetime(year, month, day, hour, minute, second, microsecond)


class DateDecoder(DateTimeDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        value = super().from_text(packet, data)
        return value.date() if value is not None else None

    def read_binary(self, packet: io.BytesIO) -> Any:
        value = super().read_binary(packet)
        return value.date() if value is not None else None


class TimeDecoder(TemporalDecoder):
    def from_text(self, packet: io.BytesIO, data: bytes) -> Any:
        text = data.decode("ascii")
        negative = text.startswith("-")
        text = text.lstrip("-")
        hms, _, fraction = text.partition(".")
        hours, minutes, seconds = (int(p) for p in hms.split(":"))
        microseconds = int(fraction.ljust(6, "0")[:6]) if fraction else 0
        value = timedelta(
            hours=hours, minutes=minutes, seconds=seconds, microseconds=microseconds
        )
        return -value if negative else value

    def read_binary(self, packet: io.BytesIO) -> Any:
        length = read_uint_1(packet)
        if length == 0:
            return timedelta(0)
        negative = read_uint_1(packet)
        days = read_uint_4(packet)
        hours = read_uint_1(packet)
        minutes = read_uint_1(packet)
        seconds = read_uint_1(packet)
        microseconds = read_uint_4(packet) if length >= 12 else 0
        value = timedelta(
            days=days,
            hours=hours,
            minutes=minutes,
            seconds=seconds,
            microseconds=microseconds,
        )
        return -value if negative else value


DEFAULT_DECODERS: Dict[ColumnType, Type[ValueDecoder]] = {
    ColumnType.DECIMAL: DecimalDecoder,
    ColumnType.NEWDECIMAL: DecimalDecoder,
    ColumnType.TINY: TinyDecoder,
    ColumnType.BOOL: TinyDecoder,
    ColumnType.SHORT: ShortDecoder,
    ColumnType.LONG: LongDecoder,
    ColumnType.INT24: LongDecoder,
    ColumnType.LONGLONG: LongLongDecoder,
    ColumnType.YEAR: YearDecoder,
    ColumnType.FLOAT: FloatDecoder,
    ColumnType.DOUBLE: DoubleDecoder,
    ColumnType.NULL: NullDecoder,
    ColumnType.TIMESTAMP: DateTimeDecoder,
    ColumnType.DATETIME: DateTimeDecoder,
    ColumnType.DATE: DateDecoder,
    ColumnType.NEWDATE: DateDecoder,
    ColumnType.TIME: TimeDecoder,
    ColumnType.BIT: BitDecoder,
    ColumnType.JSON: JsonDecoder,
    ColumnType.VARCHAR: StringDecoder,
    ColumnType.VAR_STRING: StringDecoder,
    ColumnType.STRING: StringDecoder,
    ColumnType.ENUM: StringDecoder,
    ColumnType.SET: StringDecoder,
    ColumnType.TINY_BLOB: StringDecoder,
    ColumnType.MEDIUM_BLOB: StringDecoder,
    ColumnType.LONG_BLOB: StringDecoder,
    ColumnType.BLOB: StringDecoder,
    ColumnType.GEOMETRY: BytesDecoder,
}


class DecoderRegistry:
    """Looks up the decoder for a column's type"""

    def __init__(self, decoders: Optional[Dict[ColumnType, Type[ValueDecoder]]] = None):
        self.decoders = dict(DEFAULT_DECODERS)
        if decoders:
            self.decoders.update(decoders)

    def register(self, column_type: ColumnType, decoder: Type[ValueDecoder]) -> None:
        self.decoders[column_type] = decoder

    def get(
        self,
        column_type: ColumnType,
        flags: ColumnDefinition = ColumnDefinition(0),
        charset: Optional[CharacterSet] = None,
    ) -> ValueDecoder:
        decoder = self.decoders.get(column_type, BytesDecoder)
        return decoder(flags, charset)


def encode_param(
    client_charset: CharacterSet, val: Any
) -> Tuple[ColumnType, bool, bytes]:
    """
    Encode a prepared statement parameter for COM_STMT_EXECUTE.

    Returns:
        The parameter type, whether it is unsigned, and the encoded value
    """
    # Order matters
    # bool is a subclass of int
    # datetime is a subclass of date
    if isinstance(val, bool):
        return ColumnType.TINY, False, uint_1(int(val))
    if isinstance(val, int):
        if not -(2**63) <= val <= 2**64 - 1:
            raise MysqlError(f"Integer parameter out of range: {val}")
        if val > 2**63 - 1:
            return ColumnType.LONGLONG, True, uint_8(val)
        return ColumnType.LONGLONG, False, struct.pack("<q", val)
    if isinstance(val, float):
        return ColumnType.DOUBLE, False, struct.pack("<d", val)
    if isinstance(val, Decimal):
        return ColumnType.NEWDECIMAL, False, str_len(str(val).encode("ascii"))
    if isinstance(val, str):
        return ColumnType.VAR_STRING, False, str_len(client_charset.encode(val))
    if isinstance(val, (bytes, bytearray)):
        return ColumnType.BLOB, False, str_len(bytes(val))
    if isinstance(val, datetime):
        return ColumnType.DATETIME, False, _encode_date(val)
    if isinstance(val, date):
        return ColumnType.DATE, False, _encode_date(val)
    if isinstance(val, timedelta):
        return ColumnType.TIME, False, _encode_timedelta(val)
    if isinstance(val, time):
        return (
            ColumnType.TIME,
            False,
            _encode_timedelta(
                timedelta(
                    hours=val.hour,
                    minutes=val.minute,
                    seconds=val.second,
                    microseconds=val.microsecond,
                )
            ),
        )
    raise MysqlError(f"Unsupported parameter type: {type(val).__name__}")


def _encode_date(val: date) -> bytes:
    year = val.year
    month = val.month
    day = val.day

    if isinstance(val, datetime):
        hour = val.hour
        minute = val.minute
        second = val.second
        microsecond = val.microsecond
    else:
        hour = minute = second = microsecond = 0

    if microsecond == 0:
        if hour == minute == second == 0:
            return b"".join([uint_1(4), uint_2(year), uint_1(month), uint_1(day)])
        return b"".join(
            [
                uint_1(7),
                uint_2(year),
                uint_1(month),
                uint_1(day),
                uint_1(hour),
                uint_1(minute),
                uint_1(second),
            ]
        )
    return b"".join(
        [
            uint_1(11),
            uint_2(year),
            uint_1(month),
            uint_1(day),
            uint_1(hour),
            uint_1(minute),
            uint_1(second),
            uint_4(microsecond),
        ]
    )


def _encode_timedelta(val: timedelta) -> bytes:
    is_negative = val.total_seconds() < 0
    val = abs(val)
    days = val.days
    hours, remainder = divmod(val.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    microseconds = val.microseconds

    if microseconds == 0:
        if days == hours == minutes == seconds == 0:
            return uint_1(0)
        return b"".join(
            [
                uint_1(8),
                uint_1(is_negative),
                uint_4(days),
                uint_1(hours),
                uint_1(minutes),
                uint_1(seconds),
            ]
        )
    return b"".join(
        [
            uint_1(12),
            uint_1(is_negative),
            uint_4(days),
            uint_1(hours),
            uint_1(minutes),
            uint_1(seconds),
            uint_4(microseconds),
        ]
    )
