from __future__ import annotations
from enum import IntEnum
from typing import Optional


class CharacterSet(IntEnum):
    big5 = 1
    dec8 = 3
    cp850 = 4
    hp8 = 6
    koi8r = 7
    latin1 = 8
    latin2 = 9
    swe7 = 10
    ascii = 11
    ujis = 12
    sjis = 13
    hebrew = 16
    tis620 = 18
    euckr = 19
    koi8u = 22
    gb2312 = 24
    greek = 25
    cp1250 = 26
    gbk = 28
    latin5 = 30
    armscii8 = 32
    utf8 = 33
    ucs2 = 35
    cp866 = 36
    keybcs2 = 37
    macce = 38
    macroman = 39
    cp852 = 40
    latin7 = 41
    cp1251 = 51
    utf16 = 54
    utf16le = 56
    cp1256 = 57
    cp1257 = 59
    utf32 = 60
    binary = 63
    geostd8 = 92
    cp932 = 95
    eucjpms = 97
    gb18030 = 248
    utf8mb4 = 255

    @property
    def codec(self) -> Optional[str]:
        """Python codec name, or None for the binary character set"""
        if self is CharacterSet.binary:
            return None
        return CODECS.get(self, self.name)

    @property
    def default_collation(self) -> Collation:
        return DEFAULT_COLLATIONS[self]

    def decode(self, b: bytes) -> str:
        return b.decode(self.codec or "latin1")

    def encode(self, s: str) -> bytes:
        return s.encode(self.codec or "utf8")


# Where the mysql name isn't a python codec, or the python codec differs
CODECS = {
    CharacterSet.utf8: "utf8",
    CharacterSet.utf8mb4: "utf8",
    # mysql's latin1 is actually cp1252
    CharacterSet.latin1: "cp1252",
    CharacterSet.latin5: "iso8859_9",
    CharacterSet.latin7: "iso8859_13",
    CharacterSet.dec8: "latin1",
    CharacterSet.hp8: "latin1",
    CharacterSet.swe7: "ascii",
    CharacterSet.koi8r: "koi8_r",
    CharacterSet.koi8u: "koi8_u",
    CharacterSet.ujis: "euc_jp",
    CharacterSet.eucjpms: "euc_jp",
    CharacterSet.sjis: "shift_jis",
    CharacterSet.hebrew: "iso8859_8",
    CharacterSet.greek: "iso8859_7",
    CharacterSet.euckr: "euc_kr",
    CharacterSet.tis620: "tis_620",
    CharacterSet.armscii8: "latin1",
    CharacterSet.geostd8: "latin1",
    CharacterSet.keybcs2: "cp852",
    CharacterSet.macce: "mac_latin2",
    CharacterSet.macroman: "mac_roman",
    CharacterSet.ucs2: "utf_16_be",
    CharacterSet.utf16: "utf_16_be",
    CharacterSet.utf16le: "utf_16_le",
    CharacterSet.utf32: "utf_32_be",
}


class Collation(IntEnum):
    """Default collations of each character set, plus the common non-default ones"""

    big5_chinese_ci = 1
    dec8_swedish_ci = 3
    cp850_general_ci = 4
    hp8_english_ci = 6
    koi8r_general_ci = 7
    latin1_swedish_ci = 8
    latin2_general_ci = 9
    swe7_swedish_ci = 10
    ascii_general_ci = 11
    ujis_japanese_ci = 12
    sjis_japanese_ci = 13
    hebrew_general_ci = 16
    tis620_thai_ci = 18
    euckr_korean_ci = 19
    koi8u_general_ci = 22
    gb2312_chinese_ci = 24
    greek_general_ci = 25
    cp1250_general_ci = 26
    gbk_chinese_ci = 28
    latin5_turkish_ci = 30
    armscii8_general_ci = 32
    utf8_general_ci = 33
    ucs2_general_ci = 35
    cp866_general_ci = 36
    keybcs2_general_ci = 37
    macce_general_ci = 38
    macroman_general_ci = 39
    cp852_general_ci = 40
    latin7_general_ci = 41
    utf8mb4_general_ci = 45
    utf8mb4_bin = 46
    latin1_bin = 47
    cp1251_general_ci = 51
    utf16_general_ci = 54
    utf16le_general_ci = 56
    cp1256_general_ci = 57
    cp1257_general_ci = 59
    utf32_general_ci = 60
    binary = 63
    utf8_bin = 83
    geostd8_general_ci = 92
    cp932_japanese_ci = 95
    eucjpms_japanese_ci = 97
    utf8_unicode_ci = 192
    utf8mb4_unicode_ci = 224
    gb18030_chinese_ci = 248
    utf8mb4_0900_ai_ci = 255
    utf8mb4_0900_bin = 309

    @property
    def charset(self) -> CharacterSet:
        if self is Collation.binary:
            return CharacterSet.binary
        return CharacterSet[self.name.split("_", 1)[0]]


DEFAULT_COLLATIONS = {
    CharacterSet.big5: Collation.big5_chinese_ci,
    CharacterSet.dec8: Collation.dec8_swedish_ci,
    CharacterSet.cp850: Collation.cp850_general_ci,
    CharacterSet.hp8: Collation.hp8_english_ci,
    CharacterSet.koi8r: Collation.koi8r_general_ci,
    CharacterSet.latin1: Collation.latin1_swedish_ci,
    CharacterSet.latin2: Collation.latin2_general_ci,
    CharacterSet.swe7: Collation.swe7_swedish_ci,
    CharacterSet.ascii: Collation.ascii_general_ci,
    CharacterSet.ujis: Collation.ujis_japanese_ci,
    CharacterSet.sjis: Collation.sjis_japanese_ci,
    CharacterSet.hebrew: Collation.hebrew_general_ci,
    CharacterSet.tis620: Collation.tis620_thai_ci,
    CharacterSet.euckr: Collation.euckr_korean_ci,
    CharacterSet.koi8u: Collation.koi8u_general_ci,
    CharacterSet.gb2312: Collation.gb2312_chinese_ci,
    CharacterSet.greek: Collation.greek_general_ci,
    CharacterSet.cp1250: Collation.cp1250_general_ci,
    CharacterSet.gbk: Collation.gbk_chinese_ci,
    CharacterSet.latin5: Collation.latin5_turkish_ci,
    CharacterSet.armscii8: Collation.armscii8_general_ci,
    CharacterSet.utf8: Collation.utf8_general_ci,
    CharacterSet.ucs2: Collation.ucs2_general_ci,
    CharacterSet.cp866: Collation.cp866_general_ci,
    CharacterSet.keybcs2: Collation.keybcs2_general_ci,
    CharacterSet.macce: Collation.macce_general_ci,
    CharacterSet.macroman: Collation.macroman_general_ci,
    CharacterSet.cp852: Collation.cp852_general_ci,
    CharacterSet.latin7: Collation.latin7_general_ci,
    # utf8mb4_0900_ai_ci is the 8.0 default, but 5.x servers don't know it
    CharacterSet.utf8mb4: Collation.utf8mb4_general_ci,
    CharacterSet.cp1251: Collation.cp1251_general_ci,
    CharacterSet.utf16: Collation.utf16_general_ci,
    CharacterSet.utf16le: Collation.utf16le_general_ci,
    CharacterSet.cp1256: Collation.cp1256_general_ci,
    CharacterSet.cp1257: Collation.cp1257_general_ci,
    CharacterSet.utf32: Collation.utf32_general_ci,
    CharacterSet.binary: Collation.binary,
    CharacterSet.geostd8: Collation.geostd8_general_ci,
    CharacterSet.cp932: Collation.cp932_japanese_ci,
    CharacterSet.eucjpms: Collation.eucjpms_japanese_ci,
    CharacterSet.gb18030: Collation.gb18030_chinese_ci,
}


def charset_for_collation(index: int, default: CharacterSet) -> CharacterSet:
    """
    Resolve the character set of a collation id sent by the server.

    Collation ids we don't know about fall back to `default`.
    """
    try:
        return Collation(index).charset
    except ValueError:
        return default
