from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from mysql_wire.charset import CharacterSet
from mysql_wire.types import ColumnType, ColumnDefinition


@dataclass(frozen=True)
class Field:
    """
    Column metadata from a column definition packet.

    Args:
        collation: collation id sent by the server
        character_set: the character set resolved from `collation`
        column_length: declared maximum length of the column
        decimals: scale of the column
    """

    catalog: str
    schema: str
    table: str
    org_table: str
    name: str
    org_name: str
    collation: int
    character_set: CharacterSet
    column_length: int
    type: ColumnType
    flags: ColumnDefinition
    decimals: int

    @property
    def unsigned(self) -> bool:
        return ColumnDefinition.UNSIGNED_FLAG in self.flags

    @property
    def precision(self) -> Optional[int]:
        """Number of digits in a decimal column"""
        if self.type not in (ColumnType.DECIMAL, ColumnType.NEWDECIMAL):
            return None
        # column_length counts the sign and decimal point
        return self.column_length - 2 + (1 if self.unsigned else 0)

    def __repr__(self) -> str:
        return f"Field({self.name} {self.type.name})"


@dataclass(frozen=True)
class ResultHeader:
    """What get_result found: either an OK packet or the start of a result set"""

    field_count: int
    affected_rows: int = 0
    last_insert_id: int = 0
    message: str = ""

    @property
    def has_result_set(self) -> bool:
        return self.field_count > 0


class Row(Sequence):
    """One decoded row of a result set"""

    def __init__(self, values: Sequence[Any], fields: Sequence[Field]):
        self.values = tuple(values)
        self.fields = fields

    def __getitem__(self, i: Any) -> Any:
        return self.values[i]

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self.values == other.values
        if isinstance(other, tuple):
            return self.values == other
        return NotImplemented

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: v for f, v in zip(self.fields, self.values)}

    def __repr__(self) -> str:
        return f"Row{self.values!r}"


class NullBitmap:
    """See https://dev.mysql.com/doc/internals/en/null-bitmap.html"""

    __slots__ = ("offset", "bitmap")

    def __init__(self, bitmap: bytearray, offset: int = 0):
        self.offset = offset
        self.bitmap = bitmap

    @classmethod
    def new(cls, num_bits: int, offset: int = 0) -> NullBitmap:
        bitmap = bytearray(cls.num_bytes(num_bits, offset))
        return cls(bitmap, offset)

    @classmethod
    def from_buffer(
        cls, buffer: io.BytesIO, num_bits: int, offset: int = 0
    ) -> NullBitmap:
        bitmap = bytearray(buffer.read(cls.num_bytes(num_bits, offset)))
        return cls(bitmap, offset)

    @classmethod
    def num_bytes(cls, num_bits: int, offset: int) -> int:
        return (num_bits + 7 + offset) // 8

    def flip(self, i: int) -> None:
        byte_position, bit_position = self._pos(i)
        self.bitmap[byte_position] |= 1 << bit_position

    def is_flipped(self, i: int) -> bool:
        byte_position, bit_position = self._pos(i)
        if byte_position >= len(self.bitmap):
            return False
        return bool(self.bitmap[byte_position] & (1 << bit_position))

    def _pos(self, i: int) -> Tuple[int, int]:
        byte_position = (i + self.offset) // 8
        bit_position = (i + self.offset) % 8
        return byte_position, bit_position

    def __bytes__(self) -> bytes:
        return bytes(self.bitmap)

    def __repr__(self) -> str:
        return "".join(format(b, "08b") for b in self.bitmap)
