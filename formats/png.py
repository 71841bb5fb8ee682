"""PNG chunk walking.

A PNG file is the 8-byte signature followed by ``{length, type, data, crc}``
records up to ``IEND``. Everything here works at chunk granularity so that
rewriting one chunk leaves every other byte of the file untouched.
"""
import dataclasses
import logging
import struct
import zlib
from typing import Callable, Iterator, List, Optional, Tuple

from core.errors import MalformedHeaderError
from formats.image_format import PNG_SIGNATURE

logger = logging.getLogger(__name__)

IHDR = b"IHDR"
IDAT = b"IDAT"
IEND = b"IEND"
TEXT = b"tEXt"
ZTXT = b"zTXt"
ITXT = b"iTXt"
EXIF = b"eXIf"

TEXT_CHUNK_TYPES = (TEXT, ZTXT, ITXT)

_CHUNK_HEADER = struct.Struct(">I4s")


def crc32(chunk_type: bytes, data: bytes) -> int:
    return zlib.crc32(data, zlib.crc32(chunk_type)) & 0xFFFFFFFF


@dataclasses.dataclass
class PngChunk:
    chunk_type: bytes
    data: bytes
    crc: int

    @classmethod
    def build(cls, chunk_type: bytes, data: bytes) -> "PngChunk":
        """New chunk with a freshly computed CRC."""
        return cls(chunk_type, bytes(data), crc32(chunk_type, data))

    @property
    def length(self) -> int:
        return len(self.data)

    def to_bytes(self) -> bytes:
        return _CHUNK_HEADER.pack(self.length, self.chunk_type) + self.data + struct.pack(">I", self.crc)


@dataclasses.dataclass
class PngLayout:
    """Ordered chunks of a PNG file plus any bytes found after IEND."""
    chunks: List[PngChunk]
    trailer: bytes = b""

    def find(self, chunk_type: bytes,
             predicate: Optional[Callable[[PngChunk], bool]] = None) -> Optional[int]:
        for i, chunk in enumerate(self.chunks):
            if chunk.chunk_type == chunk_type and (predicate is None or predicate(chunk)):
                return i
        return None

    def insert_before(self, anchor_type: bytes, chunk: PngChunk) -> int:
        """Insert chunk before the first chunk of anchor_type, returning its index."""
        index = self.find(anchor_type)
        if index is None:
            raise MalformedHeaderError(f"PNG has no {anchor_type.decode()} chunk")
        self.chunks.insert(index, chunk)
        return index

    def upsert(self, chunk: PngChunk, predicate: Callable[[PngChunk], bool],
               anchor_type: bytes = IEND, match_types: Optional[Tuple[bytes, ...]] = None) -> int:
        """Replace the first chunk matching predicate in place, or insert the
        chunk before anchor_type when none matches.

        Only chunks of the same type are candidates unless match_types widens
        the search.
        """
        for chunk_type in match_types or (chunk.chunk_type,):
            index = self.find(chunk_type, predicate)
            if index is not None:
                self.chunks[index] = chunk
                return index
        return self.insert_before(anchor_type, chunk)

    def to_bytes(self) -> bytes:
        return PNG_SIGNATURE + b"".join(c.to_bytes() for c in self.chunks) + self.trailer


def read_dimensions(data) -> Tuple[int, int]:
    """Return (width, height) from the IHDR chunk without decoding pixels."""
    if len(data) < 8 or data[:8] != PNG_SIGNATURE:
        raise MalformedHeaderError("Invalid PNG signature")
    if len(data) < 24:
        raise MalformedHeaderError("PNG truncated before IHDR")
    length, chunk_type = _CHUNK_HEADER.unpack_from(data, 8)
    if chunk_type != IHDR:
        raise MalformedHeaderError(f"First PNG chunk is {chunk_type!r}, expected IHDR")
    if length < 8:
        raise MalformedHeaderError(f"IHDR chunk too short ({length} bytes)")
    if len(data) < 16 + length + 4:
        raise MalformedHeaderError("PNG truncated inside IHDR")
    return struct.unpack_from(">II", data, 16)


def iter_chunks(data) -> Iterator[PngChunk]:
    """Yield chunks from the signature up to and including IEND.

    Raises MalformedHeaderError when the stream ends before IEND.
    """
    if len(data) < 8 or data[:8] != PNG_SIGNATURE:
        raise MalformedHeaderError("Invalid PNG signature")
    pos = 8
    size = len(data)
    while True:
        if pos + 8 > size:
            raise MalformedHeaderError(f"PNG truncated at offset {pos}: missing IEND")
        length, chunk_type = _CHUNK_HEADER.unpack_from(data, pos)
        data_start = pos + 8
        data_end = data_start + length
        if data_end + 4 > size:
            raise MalformedHeaderError(
                f"PNG chunk {chunk_type!r} at offset {pos} runs past end of file")
        (crc,) = struct.unpack_from(">I", data, data_end)
        yield PngChunk(chunk_type, bytes(data[data_start:data_end]), crc)
        pos = data_end + 4
        if chunk_type == IEND:
            return


def parse(data) -> PngLayout:
    chunks = []
    end = 8
    for chunk in iter_chunks(data):
        chunks.append(chunk)
        end += 12 + chunk.length
    return PngLayout(chunks, bytes(data[end:]))


def text_keyword(chunk: PngChunk) -> Optional[str]:
    """Keyword of a tEXt/zTXt/iTXt chunk, or None if it has no terminator."""
    nul = chunk.data.find(b"\x00")
    if nul <= 0:
        return None
    return chunk.data[:nul].decode("latin-1")


def decode_text_chunk(chunk: PngChunk) -> Tuple[str, str]:
    """Return (keyword, text) for a textual chunk.

    Raises ValueError/zlib.error/UnicodeDecodeError on malformed payloads.
    """
    keyword = text_keyword(chunk)
    if keyword is None:
        raise ValueError(f"{chunk.chunk_type!r} chunk has no keyword")
    rest = chunk.data[len(keyword) + 1:]

    if chunk.chunk_type == TEXT:
        return keyword, rest.decode("latin-1")

    if chunk.chunk_type == ZTXT:
        if not rest or rest[0] != 0:
            raise ValueError("Unsupported zTXt compression method")
        return keyword, zlib.decompress(rest[1:]).decode("latin-1")

    if chunk.chunk_type == ITXT:
        if len(rest) < 2:
            raise ValueError("iTXt chunk truncated")
        compressed, method = rest[0], rest[1]
        rest = rest[2:]
        # language tag, then translated keyword, both NUL terminated
        lang_end = rest.index(b"\x00")
        trans_end = rest.index(b"\x00", lang_end + 1)
        payload = rest[trans_end + 1:]
        if compressed:
            if method != 0:
                raise ValueError("Unsupported iTXt compression method")
            payload = zlib.decompress(payload)
        return keyword, payload.decode("utf-8")

    raise ValueError(f"{chunk.chunk_type!r} is not a text chunk")


def iter_text(layout: PngLayout) -> Iterator[Tuple[PngChunk, str, str]]:
    """Yield (chunk, keyword, text) for every decodable text chunk.

    Chunks that fail to decode are skipped.
    """
    for chunk in layout.chunks:
        if chunk.chunk_type not in TEXT_CHUNK_TYPES:
            continue
        try:
            keyword, text = decode_text_chunk(chunk)
        except (ValueError, zlib.error) as e:
            logger.debug("Skipping undecodable %s chunk: %s", chunk.chunk_type.decode(), e)
            continue
        yield chunk, keyword, text


def build_itxt(keyword: str, text: str) -> PngChunk:
    """Uncompressed iTXt chunk with empty language tag and translated keyword."""
    data = keyword.encode("latin-1") + b"\x00" + b"\x00\x00" + b"\x00" + b"\x00" + text.encode("utf-8")
    return PngChunk.build(ITXT, data)


def build_text(chunk_type: bytes, keyword: str, text: str) -> PngChunk:
    """tEXt or zTXt chunk holding latin-1 text."""
    raw = text.encode("latin-1")
    head = keyword.encode("latin-1") + b"\x00"
    if chunk_type == ZTXT:
        return PngChunk.build(ZTXT, head + b"\x00" + zlib.compress(raw))
    return PngChunk.build(TEXT, head + raw)
