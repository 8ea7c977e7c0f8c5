#!/usr/bin/env python3
"""
Decode X11 PCF (Portable Compiled Format) bitmap fonts.

Reads the table of contents, then the Properties, Metrics, Bitmaps and
BDF Encodings tables, and exposes every glyph as a Character whose pixels
can be queried with Character.get(x, y). Glyph bitmaps are views into one
shared bitmap blob, nothing is copied per glyph.

Usage:
    uv run python pcf_font.py <font.pcf> [text] [glyph_data.yaml]

    Prints a summary of the font and the glyphs for `text` as rows of '#'.
    With an output path, the glyphs (all encoded glyphs if `text` is empty)
    are written as YAML glyph data.
"""

import enum
import logging
import struct
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, NamedTuple

import yaml

from fontTools.misc import sstruct
from fontTools.misc.textTools import tostr

logger = logging.getLogger(__name__)

PCF_MAGIC = b"\x01fcp"

# Format word, see https://fontforge.org/docs/techref/pcf-format.html
PCF_GLYPH_PAD_MASK = 3 << 0
PCF_BYTE_MASK = 1 << 2  # set => most significant byte first
PCF_BIT_MASK = 1 << 3  # set => most significant bit first
PCF_SCAN_UNIT_MASK = 3 << 4
PCF_FORMAT_MASK = 0xFFFFFF00

PCF_DEFAULT_FORMAT = 0x00000000
PCF_INKBOUNDS = 0x00000200
PCF_ACCEL_W_INKBOUNDS = 0x00000100
PCF_COMPRESSED_METRICS = 0x00000100

# Encoding entries with this glyph index have no glyph of their own
NO_GLYPH = 0xFFFF

SUPPORTS_LSB_BIT_ORDER = False

_BYTE_ORDER_MARKS = {"big": ">", "little": "<"}
_CSTRING_CHUNK = 64


class TableType(enum.IntFlag):
    PROPERTIES = 1 << 0
    ACCELERATORS = 1 << 1
    METRICS = 1 << 2
    BITMAPS = 1 << 3
    INK_METRICS = 1 << 4
    BDF_ENCODINGS = 1 << 5
    SWIDTHS = 1 << 6
    GLYPH_NAMES = 1 << 7
    BDF_ACCELERATORS = 1 << 8


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class PCFError(ValueError):
    """Base class for everything that can go wrong while decoding a PCF font."""


class InvalidFormatError(PCFError):
    """The source is not a PCF file."""


class TruncatedInputError(PCFError):
    """A read ran past the end of the source."""


class TruncatedBitmapError(TruncatedInputError):
    """The bitmap table holds less glyph data than it declares."""


class MissingRequiredTableError(PCFError):
    """The font has no Bitmaps or no Metrics table."""


class TableSizeMismatchError(PCFError):
    """The Bitmaps and Metrics tables describe a different number of glyphs."""


class PropertyDecodeError(PCFError):
    """A property name or string value could not be read from the string pool."""


class PixelRangeError(PCFError):
    """A pixel outside the glyph's bounding box was requested."""


class GlyphLookupError(PCFError, KeyError):
    """No glyph is mapped to the requested character code."""


# ---------------------------------------------------------------------------
# Record layouts (fontTools sstruct syntax)
# ---------------------------------------------------------------------------

_TOC_ENTRY_FORMAT = """
    <  # little endian
    type:   L
    format: L
    size:   L
    offset: L
"""

# Byte order is prepended at read time, see ByteReader.read_struct
_PROP_FORMAT = """
    name_offset:    l
    is_string_prop: b
    value:          l
"""

_METRIC_FORMAT = """
    left_sided_bearing:   h
    right_sided_bearing:  h
    character_width:      h
    character_ascent:     h
    character_descent:    h
    character_attributes: H
"""

# Each byte is the metric value biased by 0x80
_COMPRESSED_METRIC_FORMAT = """
    left_sided_bearing:  B
    right_sided_bearing: B
    character_width:     B
    character_ascent:    B
    character_descent:   B
"""

_ENCODING_HEADER_FORMAT = """
    min_char_or_byte2: H
    max_char_or_byte2: H
    min_byte1:         H
    max_byte1:         H
    default_char:      H
"""


# ---------------------------------------------------------------------------
# Primitive byte reader
# ---------------------------------------------------------------------------

class ByteReader:
    """Cursor over a seekable binary stream that fails loudly on short reads."""

    def __init__(self, stream):
        self.stream = stream

    def seek(self, offset: int) -> None:
        if offset < 0:
            raise TruncatedInputError(f"Cannot seek to negative offset {offset}")
        self.stream.seek(offset)

    def tell(self) -> int:
        return self.stream.tell()

    def size(self) -> int:
        position = self.stream.tell()
        end = self.stream.seek(0, 2)
        self.stream.seek(position)
        return end

    def read_bytes(self, length: int) -> bytes:
        if length < 0:
            raise InvalidFormatError(f"Invalid read length {length}")
        offset = self.stream.tell()
        available = max(self.size() - offset, 0)
        if length > available:
            raise TruncatedInputError(
                f"Expected {length} bytes at offset {offset}, got {available}"
            )
        return self.stream.read(length)

    def read_int(self, width: int, signed: bool = False, byte_order: str = "little") -> int:
        return int.from_bytes(self.read_bytes(width), byte_order, signed=signed)

    def read_array(self, count: int, typecode: str, byte_order: str = "little") -> tuple:
        """Read `count` integers of the struct `typecode` in one go."""
        fmt = f"{_BYTE_ORDER_MARKS[byte_order]}{count}{typecode}"
        return struct.unpack(fmt, self.read_bytes(struct.calcsize(fmt)))

    def read_struct(self, fmt: str, byte_order: str | None = None) -> dict:
        """Read one fixed-layout record described in sstruct syntax."""
        if byte_order is not None:
            fmt = _BYTE_ORDER_MARKS[byte_order] + "\n" + fmt
        return sstruct.unpack(fmt, self.read_bytes(sstruct.calcsize(fmt)))

    def read_cstring(self, max_length: int | None = None) -> bytes:
        """
        Read a null-terminated byte string and return it without the terminator.

        The cursor ends up just past the terminator.
        """
        start = self.stream.tell()
        chunks = []
        consumed = 0
        while True:
            chunk = self.stream.read(_CSTRING_CHUNK)
            if not chunk:
                raise TruncatedInputError(f"Unterminated string at offset {start}")
            end = chunk.find(b"\0")
            if end >= 0:
                chunks.append(chunk[:end])
                consumed += end
                break
            chunks.append(chunk)
            consumed += len(chunk)
            if max_length is not None and consumed > max_length:
                break
        if max_length is not None and consumed > max_length:
            raise TruncatedInputError(
                f"String at offset {start} is longer than {max_length} bytes"
            )
        self.stream.seek(start + consumed + 1)
        return b"".join(chunks)


# ---------------------------------------------------------------------------
# Table of contents and format words
# ---------------------------------------------------------------------------

class TocEntry(NamedTuple):
    type: TableType
    format: int
    size: int
    offset: int


def _unit_bytes(value: int) -> int:
    """Map a 2-bit pad / scan unit field to a byte count (0 -> 1, 1 -> 2, 2 -> 4)."""
    return 1 << value


class TableFormat(NamedTuple):
    value: int
    glyph_pad: int
    scan_unit: int
    msb_byte_first: bool
    msb_bit_first: bool

    @classmethod
    def from_value(cls, value: int) -> "TableFormat":
        return cls(
            value=value,
            glyph_pad=value & PCF_GLYPH_PAD_MASK,
            scan_unit=(value & PCF_SCAN_UNIT_MASK) >> 4,
            msb_byte_first=bool(value & PCF_BYTE_MASK),
            msb_bit_first=bool(value & PCF_BIT_MASK),
        )

    @property
    def padding_bytes(self) -> int:
        return _unit_bytes(self.glyph_pad)

    @property
    def data_bytes(self) -> int:
        return _unit_bytes(self.scan_unit)

    @property
    def main_format(self) -> int:
        return self.value & PCF_FORMAT_MASK

    @property
    def byte_order(self) -> str:
        # Fonts in the wild are big-endian even when the flag says otherwise
        return "big"


def read_toc(reader: ByteReader) -> list[TocEntry]:
    """Read the file header and the table of contents."""
    reader.seek(0)
    if reader.size() < len(PCF_MAGIC):
        raise InvalidFormatError("Not a PCF file: source is shorter than the header")
    magic = reader.read_bytes(len(PCF_MAGIC))
    if magic != PCF_MAGIC:
        raise InvalidFormatError(f"Not a PCF file: bad magic {magic!r}")

    table_count = reader.read_int(4, byte_order="little")
    logger.debug("Table of contents lists %d tables", table_count)

    entries = []
    for _ in range(table_count):
        record = reader.read_struct(_TOC_ENTRY_FORMAT)
        entries.append(TocEntry(
            type=TableType(record["type"]),
            format=record["format"],
            size=record["size"],
            offset=record["offset"],
        ))
    return entries


def read_format(reader: ByteReader, warn: Callable[[str], None] | None = None) -> TableFormat:
    """
    Read the format word that starts every table.

    Byte and bit orders this decoder cannot honor are reported through `warn`
    (the module logger by default) and decoding carries on.
    """
    warn = warn or logger.warning
    table_format = TableFormat.from_value(reader.read_int(4, byte_order="little"))
    if not table_format.msb_byte_first:
        warn(
            f"Unsupported byte order in format {table_format.value:#x}: "
            "least significant byte first, decoding as big-endian"
        )
    if not table_format.msb_bit_first and not SUPPORTS_LSB_BIT_ORDER:
        warn(
            f"Unsupported bit order in format {table_format.value:#x}: "
            "least significant bit first, pixels will be mirrored"
        )
    return table_format


# ---------------------------------------------------------------------------
# Properties table
# ---------------------------------------------------------------------------

class Prop(NamedTuple):
    name_offset: int
    is_string_prop: bool
    value: int


def _read_pool_string(reader: ByteReader, offset: int, what: str) -> str:
    try:
        reader.seek(offset)
        return tostr(reader.read_cstring(), encoding="latin-1")
    except TruncatedInputError as exc:
        raise PropertyDecodeError(
            f"Could not read property {what} at offset {offset}"
        ) from exc


def read_properties(reader: ByteReader, warn=None) -> dict[str, str | int]:
    """Read the Properties table into a {name: value} dict.

    String properties are decoded as Latin-1 so every byte of the string pool
    survives unchanged; other properties keep their raw integer value.
    """
    table_format = read_format(reader, warn)
    order = table_format.byte_order

    count = reader.read_int(4, byte_order=order)
    props = []
    for _ in range(count):
        record = reader.read_struct(_PROP_FORMAT, order)
        props.append(Prop(
            name_offset=record["name_offset"],
            is_string_prop=record["is_string_prop"] == 1,
            value=record["value"],
        ))

    # Pad to the next int32 boundary
    reader.read_bytes((4 - count % 4) % 4)

    string_size = reader.read_int(4, signed=True, byte_order=order)
    strings = reader.tell()
    logger.debug("Properties table: %d properties, %d bytes of strings", count, string_size)

    properties = {}
    for prop in props:
        name = _read_pool_string(reader, strings + prop.name_offset, "name")
        if prop.is_string_prop:
            properties[name] = _read_pool_string(reader, strings + prop.value, f"value of {name}")
        else:
            properties[name] = prop.value
    return properties


# ---------------------------------------------------------------------------
# Metrics table
# ---------------------------------------------------------------------------

class Metric(NamedTuple):
    left_sided_bearing: int
    right_sided_bearing: int
    character_width: int
    character_ascent: int
    character_descent: int
    character_attributes: int = 0


def read_metrics(reader: ByteReader, warn=None) -> list[Metric]:
    """Read the Metrics table, in either its compressed or its full form."""
    table_format = read_format(reader, warn)
    order = table_format.byte_order

    metrics = []
    if table_format.main_format == PCF_COMPRESSED_METRICS:
        count = reader.read_int(2, byte_order=order)
        for _ in range(count):
            record = reader.read_struct(_COMPRESSED_METRIC_FORMAT, order)
            metrics.append(Metric(**{k: v - 0x80 for k, v in record.items()}))
    else:
        count = reader.read_int(4, byte_order=order)
        for _ in range(count):
            metrics.append(Metric(**reader.read_struct(_METRIC_FORMAT, order)))

    logger.debug("Metrics table: %d glyphs", len(metrics))
    return metrics


# ---------------------------------------------------------------------------
# Encoding table
# ---------------------------------------------------------------------------

class Encoding(Mapping):
    """Read-only character code to glyph index mapping.

    Codes that are not in the table resolve to `default`; without a default
    they raise GlyphLookupError. Membership and iteration only cover the codes
    stored in the table.
    """

    def __init__(self, codes=(), default: int | None = None):
        self._codes = dict(codes)
        self.default = default

    def __getitem__(self, code):
        try:
            return self._codes[code]
        except KeyError:
            if self.default is None:
                raise GlyphLookupError(f"No glyph mapped to character code {code!r}") from None
            return self.default

    def __contains__(self, code):
        return code in self._codes

    def __iter__(self):
        return iter(self._codes)

    def __len__(self):
        return len(self._codes)

    def __repr__(self):
        return f"Encoding({self._codes!r}, default={self.default!r})"


def read_encoding(reader: ByteReader, warn=None) -> Encoding:
    """Read the BDF Encodings table.

    Codes are `minor | major << 8`; the table is stored row by row, one row per
    major byte, so the loop order below has to match the file.
    """
    table_format = read_format(reader, warn)
    order = table_format.byte_order

    header = reader.read_struct(_ENCODING_HEADER_FORMAT, order)
    default_char = header["default_char"]
    majors = range(header["min_byte1"], header["max_byte1"] + 1)
    minors = range(header["min_char_or_byte2"], header["max_char_or_byte2"] + 1)

    codes = {}
    indices = iter(reader.read_array(len(majors) * len(minors), "H", order))
    for major in majors:
        for minor in minors:
            index = next(indices)
            codes[minor | (major << 8)] = default_char if index == NO_GLYPH else index

    logger.debug("Encoding table: %d codes, default glyph %d", len(codes), default_char)
    return Encoding(codes, default=default_char)


# ---------------------------------------------------------------------------
# Bitmap table
# ---------------------------------------------------------------------------

class BitmapTable(NamedTuple):
    bitmaps: list[memoryview]
    padding_bytes: int
    data_bytes: int


def read_bitmaps(reader: ByteReader, warn=None) -> BitmapTable:
    """Read the Bitmaps table.

    All glyph data is read as one blob; each glyph gets a view starting at its
    offset. Views are not cut at the next glyph, Character.get bounds them.
    """
    table_format = read_format(reader, warn)
    order = table_format.byte_order

    glyph_count = reader.read_int(4, byte_order=order)
    offsets = reader.read_array(glyph_count, "L", order)
    # One total per possible glyph pad, only the one in use is needed
    bitmap_sizes = reader.read_array(4, "l", order)
    size = bitmap_sizes[table_format.glyph_pad]

    try:
        blob = reader.read_bytes(size)
    except TruncatedInputError as exc:
        raise TruncatedBitmapError(f"Failed to read {size} bytes of bitmap data") from exc

    data = memoryview(blob)
    logger.debug("Bitmaps table: %d glyphs, %d bytes", glyph_count, size)
    return BitmapTable(
        bitmaps=[data[offset:] for offset in offsets],
        padding_bytes=table_format.padding_bytes,
        data_bytes=table_format.data_bytes,
    )


_TABLE_DECODERS = {
    TableType.PROPERTIES: read_properties,
    TableType.METRICS: read_metrics,
    TableType.BITMAPS: read_bitmaps,
    TableType.BDF_ENCODINGS: read_encoding,
}


# ---------------------------------------------------------------------------
# Glyphs and fonts
# ---------------------------------------------------------------------------

def row_stride(width: int, padding_bytes: int = 1, data_bytes: int = 1) -> int:
    """Bytes per bitmap row: whole bytes for `width`, padded, at least one scan unit."""
    stride = max(-(-width // 8), 1)
    if stride % padding_bytes:
        stride += padding_bytes - stride % padding_bytes
    return max(stride, data_bytes)


@dataclass(frozen=True, eq=False)
class Character:
    """A decoded glyph: its metrics and a view into the font's bitmap data."""

    bitmap: memoryview = field(repr=False)
    width: int
    ascent: int
    descent: int
    left_sided_bearing: int
    right_sided_bearing: int
    data_bytes: int = 1
    padding_bytes: int = 1
    bytes_per_row: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(
            self, "bytes_per_row", row_stride(self.width, self.padding_bytes, self.data_bytes)
        )

    @property
    def height(self) -> int:
        return self.ascent + self.descent

    def get(self, x: int, y: int) -> bool:
        """Return whether pixel (x, y) is set; y = 0 is the top row."""
        if not 0 <= x < self.width:
            raise PixelRangeError(f"Invalid x value: {x}, must be in range 0..{self.width}")
        if not 0 <= y < self.height:
            raise PixelRangeError(f"Invalid y value: {y}, must be in range 0..{self.height}")

        index = x // 8 + self.bytes_per_row * y
        if index >= len(self.bitmap):
            # Rows past the end of the data are treated as lit
            return True
        return bool(self.bitmap[index] & (1 << (7 - x % 8)))

    def to_bitmap(self) -> list[list[int]]:
        """Return the glyph as rows of 0s and 1s, top row first."""
        return [
            [1 if self.get(x, y) else 0 for x in range(self.width)]
            for y in range(self.height)
        ]

    def rows(self, on: str = "#", off: str = ".") -> list[str]:
        return ["".join(on if pixel else off for pixel in row) for row in self.to_bitmap()]


def accumulate_extent(current: int, value: int, legacy: bool = True) -> int:
    """
    Fold one glyph's ascent or descent into the font-wide value.

    The legacy policy adds `value` whenever it exceeds `current` instead of
    replacing it, which overshoots the real maximum; legacy=False gives the
    plain maximum.
    """
    if value <= current:
        return current
    return current + value if legacy else value


@dataclass(frozen=True, eq=False)
class Font:
    """A decoded PCF font."""

    encoding: Encoding
    characters: tuple[Character, ...]
    max_ascent: int
    max_descent: int
    properties: Mapping = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @classmethod
    def from_file(cls, filename, **kwargs) -> "Font":
        with open(filename, "rb") as f:
            return cls.from_source(f, **kwargs)

    @classmethod
    def from_source(
        cls,
        source,
        *,
        warn: Callable[[str], None] | None = None,
        legacy_extents: bool = True,
    ) -> "Font":
        """
        Decode a font from a seekable binary stream.

        Args:
            source: open binary file, io.BytesIO or ByteReader
            warn: called with a message for survivable format problems
                  (defaults to logging a warning)
            legacy_extents: accumulate max_ascent / max_descent the legacy
                            way (see accumulate_extent)
        """
        reader = source if isinstance(source, ByteReader) else ByteReader(source)
        warn = warn or logger.warning

        tables = {}
        for entry in read_toc(reader):
            decoder = _TABLE_DECODERS.get(entry.type)
            if decoder is None:
                logger.debug("Skipping table %r at offset %d", entry.type, entry.offset)
                continue
            if entry.type in tables:
                logger.debug("Ignoring duplicate table %r at offset %d", entry.type, entry.offset)
                continue
            reader.seek(entry.offset)
            try:
                tables[entry.type] = decoder(reader, warn)
            except PropertyDecodeError as exc:
                # Properties are optional, the glyphs do not depend on them
                warn(f"Ignoring properties table: {exc}")
                tables[entry.type] = {}

        bitmap_table = tables.get(TableType.BITMAPS)
        metrics = tables.get(TableType.METRICS)
        if bitmap_table is None:
            raise MissingRequiredTableError("Could not find a bitmap table")
        if metrics is None:
            raise MissingRequiredTableError("Could not find a metrics table")
        if len(bitmap_table.bitmaps) != len(metrics):
            raise TableSizeMismatchError(
                f"Bitmap and metrics tables are not of the same size: "
                f"{len(bitmap_table.bitmaps)} bitmaps, {len(metrics)} metrics"
            )

        characters = []
        max_ascent = 0
        max_descent = 0
        for bitmap, metric in zip(bitmap_table.bitmaps, metrics):
            max_ascent = accumulate_extent(max_ascent, metric.character_ascent, legacy_extents)
            max_descent = accumulate_extent(max_descent, metric.character_descent, legacy_extents)
            characters.append(Character(
                bitmap=bitmap,
                width=metric.character_width,
                ascent=metric.character_ascent,
                descent=metric.character_descent,
                left_sided_bearing=metric.left_sided_bearing,
                right_sided_bearing=metric.right_sided_bearing,
                data_bytes=bitmap_table.data_bytes,
                padding_bytes=bitmap_table.padding_bytes,
            ))

        return cls(
            encoding=tables.get(TableType.BDF_ENCODINGS, Encoding()),
            characters=tuple(characters),
            max_ascent=max_ascent,
            max_descent=max_descent,
            properties=tables.get(TableType.PROPERTIES, {}),
        )

    def glyph(self, code: int) -> Character:
        index = self.encoding[code]
        if not 0 <= index < len(self.characters):
            raise GlyphLookupError(
                f"Character code {code:#x} maps to glyph {index}, "
                f"font has {len(self.characters)} glyphs"
            )
        return self.characters[index]

    def lookup(self, code):
        """Look up a code point (one Character) or a string (a list, one per character)."""
        if isinstance(code, str):
            return [self.glyph(ord(char)) for char in code]
        return self.glyph(code)


# ---------------------------------------------------------------------------
# Glyph data export
# ---------------------------------------------------------------------------

def glyph_name(code: int) -> str:
    """Name a glyph after its code point using the uniXXXX convention."""
    return f"uni{code:04X}"


def glyph_data(font: Font, codes=None, font_name: str | None = None) -> dict:
    """
    Describe glyphs in the YAML glyph-data layout.

    Each glyph gets a `bitmap` of '#'/'.' rows, a `y_offset` (negative for
    descenders) and an `advance_width`, all in pixels.
    """
    if codes is None:
        codes = sorted(font.encoding)

    glyphs = {}
    for code in codes:
        character = font.glyph(code)
        glyphs[glyph_name(code)] = {
            "bitmap": character.rows(),
            "y_offset": -character.descent,
            "advance_width": character.width,
        }

    metadata = {
        "font_name": font.properties.get("FAMILY_NAME", font_name),
        "ascender": font.max_ascent,
        "descender": -font.max_descent,
    }
    if font.properties:
        metadata["properties"] = dict(font.properties)
    return {"metadata": metadata, "glyphs": glyphs}


def main():
    if len(sys.argv) < 2:
        print("Usage: uv run python pcf_font.py <font.pcf> [text] [glyph_data.yaml]")
        print("\nPrints the glyphs for `text`; with an output path, writes them as YAML")
        print("glyph data (all encoded glyphs when `text` is empty).")
        print("\nExample:")
        print('  uv run python pcf_font.py fonts/6x13.pcf "Hello" build/6x13.yaml')
        sys.exit(1)

    input_path = Path(sys.argv[1])
    text = sys.argv[2] if len(sys.argv) > 2 else ""
    output_path = Path(sys.argv[3]) if len(sys.argv) > 3 else None

    if not input_path.exists():
        print(f"Error: Input path not found: {input_path}")
        sys.exit(1)

    try:
        font = Font.from_file(input_path)
        characters = font.lookup(text)
    except PCFError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print(f"Font: {input_path}")
    print(f"  Glyphs: {len(font.characters)}")
    print(f"  Encoded codes: {len(font.encoding)}")
    print(f"  Max ascent: {font.max_ascent}")
    print(f"  Max descent: {font.max_descent}")
    for name, value in font.properties.items():
        print(f"  {name}: {value}")

    for char, character in zip(text, characters):
        print(f"\nU+{ord(char):04X} {char!r} ({character.width}x{character.height})")
        for row in character.rows():
            print(f"  {row}")

    if output_path is not None:
        codes = [ord(char) for char in text] if text else None
        data = glyph_data(font, codes, font_name=input_path.stem)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        print(f"\nGlyph data saved to: {output_path}")


if __name__ == "__main__":
    main()
