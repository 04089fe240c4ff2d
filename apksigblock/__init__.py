#!/usr/bin/python3
# encoding: utf-8
# SPDX-FileCopyrightText: 2024 FC (Fay) Stegerman <flx@obfusk.net>
# SPDX-License-Identifier: AGPL-3.0-or-later

r"""
parse/dump/split android apk v2 signing blocks

apksigblock is a tool for locating and parsing the APK Signing Block of android
APKs signed with APK Signature Scheme v2, serializing (modified) ID-value pairs
back into a block, and splitting an APK into its four contiguous sections
(contents of ZIP entries, APK Signing Block, ZIP Central Directory, ZIP End of
Central Directory), so that the block can be rewritten (e.g. to add a channel
ID) and the APK put back together again.

NB: it does not verify signatures; please use apksigner for that.


CLI
===

$ apksigblock parse [--block] [--json] [--verbose] [--wrap] APK_OR_BLOCK
$ apksigblock sections [--json] [--verbose] [--wrap] APK
$ apksigblock extract APK OUTPUT_BLOCK
$ apksigblock build --pair HEXID:FILE [--pair HEXID:FILE ...] OUTPUT_BLOCK
$ apksigblock replace APK BLOCK OUTPUT_APK

Use apksigblock --debug COMMAND to log what was found where (to stderr).


API
===

NB: every CLI command maps to an API function: e.g. parse to do_parse().

#>> import apksigblock
#>> sections = apksigblock.extract_sections(apk)
#>> pairs = apksigblock.parse_pairs(sections.signing_block.data)
#>> pairs[0x71777777] = b"channel"
#>> data = sections.with_pairs(pairs)        # new APK (bytes)


ID-value pairs
--------------

>>> import apksigblock as asb, io
>>> v2_id = asb.APK_SIGNATURE_SCHEME_V2_BLOCK_ID
>>> data = asb.serialize_pairs({v2_id: b"\xde\xad\xbe\xef"})
>>> len(data)
48
>>> data[:8].hex(), data[-24:-16].hex()
('2800000000000000', '2800000000000000')
>>> data[-16:]
b'APK Sig Block 42'
>>> asb.parse_pairs(data)
{1896449818: b'\xde\xad\xbe\xef'}

>>> blk = asb.APKSigningBlock.parse(data)   # list form (keeps duplicates)
>>> blk == asb.APKSigningBlock((asb.Pair(v2_id, b"\xde\xad\xbe\xef"),))
True
>>> blk.dump() == data
True
>>> out = io.StringIO()
>>> asb.show_pairs(blk, file=out)           # print parse tree
>>> print(out.getvalue(), end="")
PAIR ID: 0x7109871a
  APK SIGNATURE SCHEME v2 BLOCK
  SIZE: 4
>>> out = io.StringIO()
>>> asb.show_json(blk, file=out)            # JSON
>>> for line in out.getvalue().splitlines()[:8]:
...     print(line)
{
  "_type": "APKSigningBlock",
  "pairs": [
    {
      "_type": "Pair",
      "id": 1896449818,
      "length": 8,
      "value": "deadbeef"


APK sections
------------

>>> import zipfile
>>> fh = io.BytesIO()
>>> with zipfile.ZipFile(fh, "w") as zf:
...     zf.writestr("classes.dex", b"dex\n035\x00" * 8)
>>> try:
...     asb.read_sections(fh)
... except asb.SignatureNotFound as e:
...     print(e)
No APK Signing Block before ZIP Central Directory

"""

from __future__ import annotations

import collections.abc
import dataclasses
import hashlib
import logging
import os
import re
import struct
import sys
import textwrap

from binascii import hexlify
from dataclasses import dataclass
from typing import (cast, Any, BinaryIO, Callable, Dict, Iterable, Iterator, List,
                    Mapping, Optional, TextIO, Tuple, Union)

__version__ = "0.1.0"
NAME = "apksigblock"

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# https://source.android.com/docs/security/features/apksigning/v2#apk-signing-block-format
APK_SIGNATURE_SCHEME_V2_BLOCK_ID = 0x7109871a

# NB: only used to name pairs; their values are not parsed
APK_SIGNATURE_SCHEME_V3_BLOCK_ID = 0xf05368c0
APK_SIGNATURE_SCHEME_V31_BLOCK_ID = 0x1b93ad61
VERITY_PADDING_BLOCK_ID = 0x42726577
DEPENDENCY_INFO_BLOCK_ID = 0x504b4453
GOOGLE_PLAY_FROSTING_BLOCK_ID = 0x2146444e
SOURCE_STAMP_V1_BLOCK_ID = 0x2b09189e
SOURCE_STAMP_V2_BLOCK_ID = 0x6dff800d

BLOCK_NAMES = {
    APK_SIGNATURE_SCHEME_V2_BLOCK_ID: "APK SIGNATURE SCHEME v2 BLOCK",
    APK_SIGNATURE_SCHEME_V3_BLOCK_ID: "APK SIGNATURE SCHEME v3 BLOCK",
    APK_SIGNATURE_SCHEME_V31_BLOCK_ID: "APK SIGNATURE SCHEME v3.1 BLOCK",
    VERITY_PADDING_BLOCK_ID: "VERITY PADDING BLOCK",
    DEPENDENCY_INFO_BLOCK_ID: "DEPENDENCY INFO BLOCK",
    GOOGLE_PLAY_FROSTING_BLOCK_ID: "GOOGLE PLAY FROSTING BLOCK",
    SOURCE_STAMP_V1_BLOCK_ID: "SOURCE STAMP v1 BLOCK",
    SOURCE_STAMP_V2_BLOCK_ID: "SOURCE STAMP v2 BLOCK",
}

APK_SIG_BLOCK_MAGIC = b"APK Sig Block 42"
APK_SIG_BLOCK_MAGIC_LO = 0x20676953204b5041
APK_SIG_BLOCK_MAGIC_HI = 0x3234206b636f6c42
APK_SIG_BLOCK_MIN_SIZE = 32                     # size, size (again), magic
APK_SIG_BLOCK_FOOTER_SIZE = 24                  # size (again), magic

# NB: apksig uses signed 32-bit ints for these sizes
MAX_ENTRY_SIZE = 0x7fffffff
MAX_BLOCK_SIZE = MAX_ENTRY_SIZE - 8

EOCD_SIG = b"\x50\x4b\x05\x06"                  # 0x06054b50
EOCD_MIN_SIZE = 22
EOCD_MAX_COMMENT_SIZE = 0xffff
EOCD_CD_SIZE_OFFSET = 12
EOCD_CD_OFFSET_OFFSET = 16
EOCD_COMMENT_SIZE_OFFSET = 20

ZIP64_EOCD_LOCATOR_SIG = b"\x50\x4b\x06\x07"    # 0x07064b50
ZIP64_EOCD_LOCATOR_SIZE = 20
ZIP64_MARKER = 0xffffffff

SECTION_NAMES = dict(
    content_entries="CONTENTS OF ZIP ENTRIES",
    signing_block="APK SIGNING BLOCK",
    central_dir="ZIP CENTRAL DIRECTORY",
    eocd="ZIP END OF CENTRAL DIRECTORY",
)

WRAP_COLUMNS = 80   # overridden in main() if $APKSIGBLOCK_WRAP_COLUMNS is set

IdValueMap = Dict[int, bytes]


class APKSigBlockError(Exception):
    """Base class for errors."""


class SignatureNotFound(APKSigBlockError):
    """No (valid) APK Signing Block found."""


class UnsupportedFormat(SignatureNotFound):
    """Unsupported ZIP format (i.e. ZIP64)."""


class CorruptLayout(APKSigBlockError):
    """APK sections are not contiguous or do not cover the whole file."""


class InvalidArgument(APKSigBlockError, ValueError):
    """Invalid argument (e.g. an empty pair map)."""


class InternalError(APKSigBlockError):
    """Internal error (should not happen)."""


@dataclass(frozen=True)
class APKSigBlockBase:
    """Base class for dataclasses."""

    def for_json(self) -> Mapping[str, Any]:
        """Convert to JSON: dict of all attributes not starting with _, plus _type."""
        d = {k: v for k, v in self.__dict__.items() if not k.startswith("_")}
        return dict(_type=self.__class__.__name__, **d)


@dataclass(frozen=True)
class FileRegion(APKSigBlockBase):
    """Contiguous region of a file: its data and (absolute) offset."""
    data: bytes
    offset: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def end(self) -> int:
        """Offset of the first byte after this region."""
        return self.offset + len(self.data)

    def for_json(self) -> Mapping[str, Any]:
        """Convert to JSON: offset, size, and SHA-256 (instead of the data)."""
        x = dict(offset=self.offset, size=self.size, sha256=sha256_hex(self.data))
        return dict(_type=self.__class__.__name__, **x)


@dataclass(frozen=True)
class Pair(APKSigBlockBase):
    """ID-value pair."""
    id: int
    value: bytes

    @property
    def length(self) -> int:
        """Entry size as stored in the block (ID + value)."""
        return len(self.value) + 4

    @property
    def name(self) -> Optional[str]:
        """Name of the block type (if known)."""
        return BLOCK_NAMES.get(self.id)

    def dump(self) -> bytes:
        """
        Dump Pair.

        Uses dump_pair().
        """
        return dump_pair(self)

    def for_json(self) -> Mapping[str, Any]:
        """Convert to JSON."""
        return {**super().for_json(), "length": self.length}


@dataclass(frozen=True)
class APKSigningBlock(APKSigBlockBase):
    """APK Signing Block: a sequence of ID-value pairs."""
    pairs: Tuple[Pair, ...]

    @classmethod
    def parse(cls, data: bytes) -> APKSigningBlock:
        """
        Parse APK Signing Block.

        Uses parse_pair_list().
        """
        return cls(parse_pair_list(data))

    @classmethod
    def from_dict(cls, pairs: Mapping[int, bytes]) -> APKSigningBlock:
        """Create an APKSigningBlock from an ID-value map (in its order)."""
        return cls(tuple(Pair(k, bytes(v)) for k, v in pairs.items()))

    def dump(self) -> bytes:
        """
        Dump APK Signing Block.

        Uses serialize_pairs().
        """
        return serialize_pairs(self.pairs)

    def as_dict(self) -> IdValueMap:
        """ID-value map; later duplicates overwrite earlier values (but not their position)."""
        return {pair.id: pair.value for pair in self.pairs}

    @property
    def ids(self) -> Tuple[int, ...]:
        return tuple(pair.id for pair in self.pairs)

    @property
    def duplicate_ids(self) -> Tuple[int, ...]:
        """IDs that occur more than once (in order of first occurrence)."""
        ids = self.ids
        return tuple(i for n, i in enumerate(ids) if ids.count(i) > 1 and i not in ids[:n])

    @property
    def has_v2_signature(self) -> bool:
        return APK_SIGNATURE_SCHEME_V2_BLOCK_ID in self.ids


@dataclass(frozen=True)
class ApkSections(APKSigBlockBase):
    """
    The four contiguous sections of an APK signed with APK Signature Scheme v2:

    * the contents of the ZIP entries (starting at offset 0)
    * the APK Signing Block
    * the ZIP Central Directory
    * the ZIP End of Central Directory (including the ZIP comment)
    """
    content_entries: FileRegion
    signing_block: FileRegion
    central_dir: FileRegion
    eocd: FileRegion

    def __str__(self) -> str:
        return "ApkSections(" + ", ".join(
            f"{name}=[{region.offset}:{region.end}]" for name, region in self.named_regions()
        ) + ")"

    def named_regions(self) -> Tuple[Tuple[str, FileRegion], ...]:
        return tuple((f.name, getattr(self, f.name)) for f in dataclasses.fields(self))

    @property
    def regions(self) -> Tuple[FileRegion, ...]:
        return tuple(region for _, region in self.named_regions())

    @property
    def size(self) -> int:
        """Size of the APK (i.e. the end of the EOCD)."""
        return self.eocd.end

    def check_layout(self, file_size: Optional[int] = None) -> None:
        """
        Check that the sections are contiguous, in order, start at offset 0,
        and (when file_size is not None) end at file_size.

        Raises CorruptLayout on failure.
        """
        expected = 0
        for name, region in self.named_regions():
            if region.offset != expected:
                raise CorruptLayout(f"Section {name} at offset {region.offset}, expected {expected}")
            expected = region.end
        if file_size is not None and expected != file_size:
            raise CorruptLayout(f"Sections end at offset {expected}, file size is {file_size}")

    def dump(self) -> bytes:
        """Concatenated sections (i.e. the original APK)."""
        return b"".join(region.data for region in self.regions)

    def rebuild(self, sig_block: bytes) -> bytes:
        """
        Put the APK back together with sig_block replacing the APK Signing
        Block; the central directory offset in the EOCD is updated accordingly.

        Returns the new APK (bytes).
        """
        check_block_framing(sig_block)
        cd_offset = self.content_entries.size + len(sig_block)
        eocd = patch_eocd(self.eocd.data, cd_offset)
        return self.content_entries.data + bytes(sig_block) + self.central_dir.data + eocd

    def with_pairs(self, pairs: PairsLike) -> bytes:
        """
        Like rebuild(), using a new APK Signing Block created from pairs.

        Uses serialize_pairs().
        """
        return self.rebuild(serialize_pairs(pairs))


PairsLike = Union[Mapping[int, bytes], Iterable[Pair]]


################################################################################
#
# https://en.wikipedia.org/wiki/ZIP_(file_format)
# https://source.android.com/docs/security/features/apksigning/v2#apk-signing-block-format
#
# =================================
# | Contents of ZIP entries       |
# =================================
# | APK Signing Block             |
# | ----------------------------- |
# | | size (w/o this) uint64 LE | |
# | | ID-value pairs:           | |
# | | | size (w/o this) u64 LE| | |
# | | | ID              u32 LE| | |
# | | | value     (size - 4)B | | |
# | | size (again)    uint64 LE | |
# | | "APK Sig Block 42" (16B)  | |
# | ----------------------------- |
# =================================
# | ZIP Central Directory         |
# =================================
# | [ZIP64 EOCD Locator (20B)]    |
# =================================
# | ZIP End of Central Directory  |
# | ----------------------------- |
# | | 0x06054b50 ( 4B)          | |
# | | ...        ( 8B)          | |
# | | CD Size    ( 4B)          | |
# | | CD Offset  ( 4B)          | |
# | | Comment Size (2B)         | |
# | | Comment    (0-65535B)     | |
# | ----------------------------- |
# =================================
#
################################################################################

def locate_eocd(fh: BinaryIO) -> FileRegion:
    r"""
    Find the ZIP End of Central Directory record.

    Returns a FileRegion with the EOCD record (including the ZIP comment, so it
    always ends at the end of the file) and its offset; raises
    SignatureNotFound when there is no EOCD.

    When the comment contains something that looks like an EOCD record, only a
    record whose comment size matches its distance from the end of the file is
    considered valid.

    >>> import io
    >>> eocd = locate_eocd(io.BytesIO(b"\x00" * 10 + EOCD_SIG + b"\x00" * 18))
    >>> eocd.offset, eocd.size
    (10, 22)
    >>> try:
    ...     locate_eocd(io.BytesIO(b"not a ZIP file"))
    ... except SignatureNotFound as e:
    ...     print(e)
    EOCD not found

    """
    file_size = _file_size(fh)
    if file_size < EOCD_MIN_SIZE:
        raise SignatureNotFound("EOCD not found")
    count = min(file_size, EOCD_MIN_SIZE + EOCD_MAX_COMMENT_SIZE)
    tail_offset = file_size - count
    tail = _read_at(fh, tail_offset, count)
    end = count - EOCD_MIN_SIZE + len(EOCD_SIG)
    while (pos := tail.rfind(EOCD_SIG, 0, end)) != -1:
        comment_size = count - EOCD_MIN_SIZE - pos
        field = pos + EOCD_COMMENT_SIZE_OFFSET
        if int.from_bytes(tail[field:field + 2], "little") == comment_size:
            logger.debug("EOCD at offset %d (comment size %d)", tail_offset + pos, comment_size)
            return FileRegion(tail[pos:], tail_offset + pos)
        end = pos + len(EOCD_SIG) - 1
    raise SignatureNotFound("EOCD not found")


def is_zip64(fh: BinaryIO, eocd_offset: int) -> bool:
    """Whether a ZIP64 EOCD Locator immediately precedes the EOCD."""
    if eocd_offset < ZIP64_EOCD_LOCATOR_SIZE:
        return False
    return _read_at(fh, eocd_offset - ZIP64_EOCD_LOCATOR_SIZE, 4) == ZIP64_EOCD_LOCATOR_SIG


def central_dir_offset(eocd: FileRegion) -> int:
    """
    Central directory offset from the EOCD.

    Raises SignatureNotFound when it is not before the EOCD.
    """
    cd_offset = _u32(eocd.data, EOCD_CD_OFFSET_OFFSET)
    if cd_offset >= eocd.offset:
        raise SignatureNotFound(f"ZIP Central Directory offset out of range: {cd_offset} "
                                f"(central dir after EOCD at offset {eocd.offset})")
    return cd_offset


def central_dir_size(eocd: FileRegion) -> int:
    """Central directory size from the EOCD."""
    return _u32(eocd.data, EOCD_CD_SIZE_OFFSET)


def patch_eocd(eocd: bytes, cd_offset: int) -> bytes:
    r"""
    Returns a copy of the EOCD record eocd with its central directory offset
    set to cd_offset.

    Raises UnsupportedFormat when cd_offset would require ZIP64.

    >>> eocd = EOCD_SIG + b"\x00" * 18
    >>> patch_eocd(eocd, 0x1234)[16:20].hex()
    '34120000'
    >>> try:
    ...     patch_eocd(eocd, 0x100000000)
    ... except UnsupportedFormat as e:
    ...     print(e)
    ZIP Central Directory offset requires ZIP64: 4294967296

    """
    if len(eocd) < EOCD_MIN_SIZE or eocd[:4] != EOCD_SIG:
        raise InvalidArgument("Expected end of central directory record (EOCD)")
    if not 0 <= cd_offset < ZIP64_MARKER:
        raise UnsupportedFormat(f"ZIP Central Directory offset requires ZIP64: {cd_offset}")
    field = EOCD_CD_OFFSET_OFFSET
    return bytes(eocd[:field]) + int.to_bytes(cd_offset, 4, "little") + bytes(eocd[field + 4:])


def find_apk_signing_block(fh: BinaryIO, cd_offset: int) -> FileRegion:
    """
    Find the APK Signing Block that immediately precedes the central directory
    at cd_offset.

    Returns a FileRegion with the block and its offset; raises
    SignatureNotFound when there is no (valid) block.
    """
    if cd_offset < APK_SIG_BLOCK_MIN_SIZE:
        raise SignatureNotFound(f"APK too small for APK Signing Block: "
                                f"ZIP Central Directory offset {cd_offset}")
    footer = _read_at(fh, cd_offset - APK_SIG_BLOCK_FOOTER_SIZE, APK_SIG_BLOCK_FOOTER_SIZE)
    if footer[8:] != APK_SIG_BLOCK_MAGIC:
        raise SignatureNotFound("No APK Signing Block before ZIP Central Directory")
    sb_size = _u64(footer, 0)
    if not APK_SIG_BLOCK_FOOTER_SIZE <= sb_size <= MAX_BLOCK_SIZE:
        raise SignatureNotFound(f"APK Signing Block size out of range: {sb_size}")
    total_size = sb_size + 8
    if total_size > cd_offset:
        raise SignatureNotFound(f"APK Signing Block offset out of range: {cd_offset - total_size}")
    sb_offset = cd_offset - total_size
    data = _read_at(fh, sb_offset, total_size)
    if (header_size := _u64(data, 0)) != sb_size:
        raise SignatureNotFound(f"APK Signing Block sizes in header and footer do not match: "
                                f"{header_size} vs {sb_size}")
    logger.debug("APK Signing Block at offset %d (size %d)", sb_offset, total_size)
    return FileRegion(data, sb_offset)


def check_block_framing(data: bytes) -> None:
    """
    Check the framing of an APK Signing Block: both size fields and the magic.

    Raises SignatureNotFound on failure.
    """
    if len(data) < APK_SIG_BLOCK_MIN_SIZE:
        raise SignatureNotFound(f"APK Signing Block too small: {len(data)} bytes")
    if bytes(data[-16:]) != APK_SIG_BLOCK_MAGIC:
        raise SignatureNotFound("APK Signing Block magic mismatch")
    sb_size1, sb_size2 = _u64(data, 0), _u64(data, len(data) - 24)
    if not sb_size1 == sb_size2 == len(data) - 8:
        raise SignatureNotFound(f"APK Signing Block size mismatch: {sb_size1} and {sb_size2}, "
                                f"expected {len(data) - 8}")


def parse_pairs(data: bytes) -> IdValueMap:
    r"""
    Parse APK Signing Block into an ID-value map (in the order of the block).

    NB: later pairs with the same ID overwrite the value of earlier pairs (but
    the ID keeps its original position); use parse_pair_list() to get all
    pairs.

    Raises SignatureNotFound when the block is invalid or contains no pairs.

    >>> data = serialize_pairs([Pair(1, b"foo"), Pair(2, b"bar"), Pair(1, b"baz")])
    >>> parse_pairs(data)
    {1: b'baz', 2: b'bar'}

    """
    return {pair.id: pair.value for pair in _parse_pairs(bytes(data))}


def parse_pair_list(data: bytes) -> Tuple[Pair, ...]:
    """
    Parse APK Signing Block into a tuple of Pair (including any duplicates).

    Raises SignatureNotFound when the block is invalid or contains no pairs.
    """
    return tuple(_parse_pairs(bytes(data)))


def _parse_pairs(data: bytes) -> Iterator[Pair]:
    """Yield Pair(s)."""
    check_block_framing(data)
    pairs = data[8:-APK_SIG_BLOCK_FOOTER_SIZE]
    pos = entry = 0
    while pos < len(pairs):
        entry += 1
        if len(pairs) - pos < 8:
            raise SignatureNotFound("Insufficient data to read size of "
                                    f"APK Signing Block entry #{entry}")
        size = _u64(pairs, pos)
        if size < 4 or size > MAX_ENTRY_SIZE:
            raise SignatureNotFound(f"APK Signing Block entry #{entry} size out of range: {size}")
        available = len(pairs) - pos - 8
        if size > available:
            raise SignatureNotFound(f"APK Signing Block entry #{entry} size out of range: {size}, "
                                    f"available: {available}")
        pair_id = _u32(pairs, pos + 8)
        if pair_id == APK_SIGNATURE_SCHEME_V2_BLOCK_ID:
            logger.debug("APK Signature Scheme v2 Block is entry #%d", entry)
        yield Pair(pair_id, pairs[pos + 12:pos + 8 + size])
        pos += 8 + size
    if not entry:
        raise SignatureNotFound("No ID-value pairs in APK Signing Block")


def serialize_pairs(pairs: PairsLike) -> bytes:
    """
    Serialize ID-value pairs (an ID-value map or Pair(s), in order) as an APK
    Signing Block.

    Raises InvalidArgument when there are no pairs, an ID is not a uint32, or a
    value is too large.
    """
    validated = _validate_pairs(pairs)
    if not validated:
        raise InvalidArgument("empty pair map")
    sb_size = APK_SIG_BLOCK_FOOTER_SIZE + sum(8 + pair.length for pair in validated)
    out = bytearray(int.to_bytes(sb_size, 8, "little"))
    for pair in validated:
        out += dump_pair(pair)
    out += struct.pack("<QQQ", sb_size, APK_SIG_BLOCK_MAGIC_LO, APK_SIG_BLOCK_MAGIC_HI)
    if len(out) != sb_size + 8:
        raise InternalError(f"APK Signing Block size mismatch: wrote {len(out)} bytes, "
                            f"expected {sb_size + 8}")
    return bytes(out)


def _validate_pairs(pairs: PairsLike) -> List[Pair]:
    if isinstance(pairs, collections.abc.Mapping):
        items = [(pair_id, value) for pair_id, value in pairs.items()]
    else:
        items = []
        for pair in pairs:
            if not isinstance(pair, Pair):
                raise InvalidArgument(f"Expected Pair, got {pair.__class__.__name__}")
            items.append((pair.id, pair.value))
    validated = []
    for pair_id, value in items:
        if isinstance(pair_id, bool) or not isinstance(pair_id, int) \
                or not 0 <= pair_id <= 0xffffffff:
            raise InvalidArgument(f"Pair ID out of range: {pair_id!r}")
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise InvalidArgument(f"Expected bytes for pair ID {hex(pair_id)}, "
                                  f"got {value.__class__.__name__}")
        if len(value) + 4 > MAX_ENTRY_SIZE:
            raise InvalidArgument(f"Value too large for pair ID {hex(pair_id)}: {len(value)} bytes")
        validated.append(Pair(pair_id, bytes(value)))
    return validated


def dump_pair(pair: Pair) -> bytes:
    """Dump Pair."""
    return struct.pack("<QL", pair.length, pair.id) + pair.value


def read_sections(fh: BinaryIO) -> ApkSections:
    """
    Split the APK opened as fh into its four sections.

    Raises SignatureNotFound when there is no (valid) APK Signing Block,
    UnsupportedFormat for ZIP64, and CorruptLayout when the sections do not
    cover the whole file.
    """
    file_size = _file_size(fh)
    eocd, cd_offset = _locate_central_dir(fh)
    cd_size = central_dir_size(eocd)
    if cd_offset + cd_size != eocd.offset:
        raise SignatureNotFound("ZIP Central Directory is not immediately followed by End of "
                                f"Central Directory: CD end {cd_offset + cd_size}, "
                                f"EOCD start {eocd.offset}")
    sig_block = find_apk_signing_block(fh, cd_offset)
    central_dir = FileRegion(_read_at(fh, cd_offset, eocd.offset - cd_offset), cd_offset)
    content_entries = FileRegion(_read_at(fh, 0, sig_block.offset), 0)
    sections = ApkSections(content_entries, sig_block, central_dir, eocd)
    sections.check_layout(file_size)
    logger.debug("%s", sections)
    return sections


def extract_sections(apkfile: str) -> ApkSections:
    """
    Split APK into its four sections.

    Uses read_sections().
    """
    with open(apkfile, "rb") as fh:
        return read_sections(fh)


def extract_apk_signing_block(apkfile: str) -> FileRegion:
    """
    Extract APK Signing Block and its offset from APK.

    Raises SignatureNotFound when there is no (valid) APK Signing Block and
    UnsupportedFormat for ZIP64.
    """
    with open(apkfile, "rb") as fh:
        _, cd_offset = _locate_central_dir(fh)
        return find_apk_signing_block(fh, cd_offset)


def replace_apk_signing_block(apkfile: str, new_sig_block: bytes,
                              output_apk: Optional[str] = None) -> None:
    """
    Replace APK Signing Block of apkfile with new_sig_block and save as
    output_apk (or modify apkfile in place when output_apk is None).

    Raises SignatureNotFound when new_sig_block is not a valid APK Signing
    Block.
    """
    parse_pair_list(new_sig_block)      # try parsing, ignore result
    data = extract_sections(apkfile).rebuild(new_sig_block)
    with open(output_apk or apkfile, "wb") as fh:
        fh.write(data)


def _locate_central_dir(fh: BinaryIO) -> Tuple[FileRegion, int]:
    eocd = locate_eocd(fh)
    if is_zip64(fh, eocd.offset):
        raise UnsupportedFormat("ZIP64 APK not supported")
    cd_offset = central_dir_offset(eocd)
    logger.debug("ZIP Central Directory at offset %d", cd_offset)
    return eocd, cd_offset


def _file_size(fh: BinaryIO) -> int:
    return fh.seek(0, os.SEEK_END)


def _read_at(fh: BinaryIO, offset: int, size: int) -> bytes:
    fh.seek(offset)
    data = fh.read(size)
    if len(data) != size:
        raise CorruptLayout("Unexpected EOF")
    return data


def _u32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], "little")


def _u64(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 8], "little")


def sha256_hex(data: bytes) -> str:
    """SHA-256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()


def show_pairs(block: APKSigningBlock, *, file: TextIO = sys.stdout,
               verbose: bool = False, wrap: bool = False) -> None:
    """Print pairs (w/ indent etc.) to file (stdout)."""
    p = _printer(file, wrap)
    for pair in block.pairs:
        if verbose:
            p("PAIR LENGTH:", pair.length)
        p("PAIR ID:", hex(pair.id))
        p("  " + (pair.name or "UNKNOWN BLOCK"))
        p("  SIZE:", len(pair.value))
        if verbose:
            _show_hex(pair.value, 2, file=file, wrap=wrap)
    if block.duplicate_ids:
        p("DUPLICATE PAIR IDS:", ", ".join(map(hex, block.duplicate_ids)))


def show_sections(sections: ApkSections, *, file: TextIO = sys.stdout,
                  verbose: bool = False, wrap: bool = False) -> None:
    """Print APK sections (w/ indent etc.) to file (stdout)."""
    p = _printer(file, wrap)
    for name, region in sections.named_regions():
        p(SECTION_NAMES[name])
        p("  OFFSET:", region.offset)
        p("  SIZE:", region.size)
        if verbose:
            p("  SHA256 (HEX):", sha256_hex(region.data))
    p("TOTAL SIZE:", sections.size)


def _show_hex(data: bytes, indent: int, *, file: TextIO = sys.stdout,
              what: str = "VALUE", wrap: bool = False) -> None:
    """Print hex value (w/ indent etc.) to file (stdout)."""
    out = " " * indent + f"{what} (HEX): " + hexlify(data).decode()
    print(_wrap(out, indent, wrap), file=file)


def _printer(file: TextIO, wrap: bool) -> Callable[..., None]:
    def p(*a: Any) -> None:
        print(_wrap(" ".join(map(str, a)), wrap=wrap), file=file)
    return p


def _wrap(s: str, indent: Optional[int] = None, wrap: bool = True) -> str:
    if not wrap:
        return s
    i = len(re.split("^( *)", s, 1)[1]) if indent is None else indent
    return "\n".join(textwrap.wrap(s, width=WRAP_COLUMNS, subsequent_indent=" " * (i + 2)))


def show_json(obj: APKSigBlockBase, *, file: TextIO = sys.stdout) -> None:
    """Print obj as JSON to file (stdout)."""
    import simplejson   # FIXME: casting None to str because of wrong type stub
    simplejson.dump(obj, file, indent=2, sort_keys=True, encoding=cast(str, None),
                    default=json_dump_default, for_json=True)
    print(file=file)


def json_dump_default(obj: Any) -> str:
    """
    Returns serializable versions of bytes (hex str) for simplejson.dump().

    >>> import io, simplejson
    >>> from apksigblock import json_dump_default
    >>> out = io.StringIO()
    >>> simplejson.dump(dict(foo=b"bar"), out, encoding=None, default=json_dump_default)
    >>> print(out.getvalue())
    {"foo": "626172"}

    """
    if isinstance(obj, bytes):
        return hexlify(obj).decode()
    raise TypeError(repr(obj) + " is not JSON serializable")


def do_parse(apk_or_block: str, *, block: bool = False, json: bool = False,
             verbose: bool = False, wrap: bool = False) -> None:
    """
    Parse APK Signing Block (from the file apk_or_block, which is expected to be
    an extracted block when block=True, an APK otherwise) and output its pairs
    (indented with spaces) or JSON (when json=True).
    """
    if block:
        with open(apk_or_block, "rb") as fh:
            sig_block = fh.read()
    else:
        sig_block = extract_apk_signing_block(apk_or_block).data
    blk = APKSigningBlock.parse(sig_block)
    if json:
        show_json(blk, file=sys.stdout)
    else:
        show_pairs(blk, file=sys.stdout, verbose=verbose, wrap=wrap)


def do_sections(apk: str, *, json: bool = False, verbose: bool = False,
                wrap: bool = False) -> None:
    """Split APK into its sections and output their offsets and sizes (or JSON)."""
    sections = extract_sections(apk)
    if json:
        show_json(sections, file=sys.stdout)
    else:
        show_sections(sections, file=sys.stdout, verbose=verbose, wrap=wrap)


def do_extract(apk: str, output_block: str) -> None:
    """Extract APK Signing Block from APK and save as output_block."""
    sig_block = extract_apk_signing_block(apk)
    with open(output_block, "wb") as fh:
        fh.write(sig_block.data)


def do_build(output_block: str, *, pair: Tuple[Tuple[int, str], ...]) -> None:
    """
    Create an APK Signing Block from pairs of (ID, file with value), in order,
    and save as output_block.
    """
    pairs = []
    for pair_id, value_file in pair:
        with open(value_file, "rb") as fh:
            pairs.append(Pair(pair_id, fh.read()))
    data = serialize_pairs(pairs)
    with open(output_block, "wb") as fh:
        fh.write(data)


def do_replace(apk: str, block: str, output_apk: str) -> None:
    """
    Replace APK Signing Block of apk with the (extracted) block and save as
    output_apk.
    """
    with open(block, "rb") as fh:
        sig_block = fh.read()
    replace_apk_signing_block(apk, sig_block, output_apk)


def main() -> None:
    """CLI; requires click."""

    global WRAP_COLUMNS
    if (columns := os.environ.get("APKSIGBLOCK_WRAP_COLUMNS", "")).isdigit():
        WRAP_COLUMNS = int(columns)

    import click

    @click.group(help="""
        apksigblock - parse/dump/split android apk v2 signing blocks
    """)
    @click.option("--debug", is_flag=True, help="Log what was found where (to stderr).")
    @click.version_option(__version__)
    def cli(debug: bool) -> None:
        if debug:
            logging.basicConfig(format="%(levelname)s:%(name)s: %(message)s",
                                level=logging.DEBUG)

    @cli.command(help="""
        Parse APK Signing Block (from APK or extracted block) and output its
        ID-value pairs (indented with spaces) or JSON.
    """)
    @click.option("--block", is_flag=True,
                  help="APK_OR_BLOCK is an extracted block, not an APK.")
    @click.option("--json", is_flag=True, help="JSON output.")
    @click.option("-v", "--verbose", is_flag=True, help="Be verbose (no-op w/ --json).")
    @click.option("--wrap", is_flag=True, help="Wrap output (no-op w/ --json).")
    @click.argument("apk_or_block", type=click.Path(exists=True, dir_okay=False))
    def parse(*args: Any, **kwargs: Any) -> None:
        do_parse(*args, **kwargs)

    @cli.command(help="""
        Split APK into its sections (contents of ZIP entries, APK Signing Block,
        ZIP Central Directory, ZIP End of Central Directory) and output their
        offsets and sizes (or JSON).
    """)
    @click.option("--json", is_flag=True, help="JSON output.")
    @click.option("-v", "--verbose", is_flag=True, help="Show SHA-256 (no-op w/ --json).")
    @click.option("--wrap", is_flag=True, help="Wrap output (no-op w/ --json).")
    @click.argument("apk", type=click.Path(exists=True, dir_okay=False))
    def sections(*args: Any, **kwargs: Any) -> None:
        do_sections(*args, **kwargs)

    @cli.command(help="""
        Extract APK Signing Block from APK.
    """)
    @click.argument("apk", type=click.Path(exists=True, dir_okay=False))
    @click.argument("output_block", type=click.Path(dir_okay=False))
    def extract(*args: Any, **kwargs: Any) -> None:
        do_extract(*args, **kwargs)

    @cli.command(help="""
        Create APK Signing Block from ID-value pairs (in the order specified).
    """)
    @click.option("--pair", multiple=True, required=True, metavar="HEXID:FILE",
                  help="Pair with the specified hex ID and the contents of FILE as "
                       "value; use multiple times to specify multiple pairs.")
    @click.argument("output_block", type=click.Path(dir_okay=False))
    @click.pass_context
    def build(ctx: click.Context, /, *args: Any, **kwargs: Any) -> None:
        kwargs["pair"] = _parse_pair_options(kwargs["pair"], ctx, build)
        do_build(*args, **kwargs)

    @cli.command(help="""
        Replace APK Signing Block of APK with (extracted) BLOCK and save as
        OUTPUT_APK.
    """)
    @click.argument("apk", type=click.Path(exists=True, dir_okay=False))
    @click.argument("block", type=click.Path(exists=True, dir_okay=False))
    @click.argument("output_apk", type=click.Path(dir_okay=False))
    def replace(*args: Any, **kwargs: Any) -> None:
        do_replace(*args, **kwargs)

    def _parse_pair_options(values: Tuple[str, ...], ctx: click.Context,
                            cmd: click.Command) -> Tuple[Tuple[int, str], ...]:
        try:
            result = []
            for value in values:
                hexid, value_file = value.split(":", 1)
                result.append((int(hexid, 16), value_file))
            return tuple(result)
        except ValueError as e:
            p, = [x for x in cmd.params if x.name == "pair"]
            raise click.exceptions.BadParameter(e.args[0], ctx, p)

    try:
        cli(prog_name=NAME)
    except APKSigBlockError as e:
        _err(f"Error: {e}.")
        sys.exit(3)


def _err(*a: str) -> None:
    sys.stdout.flush()
    print(*a, file=sys.stderr)
    sys.stderr.flush()


if __name__ == "__main__":
    main()

# vim: set tw=80 sw=4 sts=4 et fdm=marker :
