import logging
import os
from typing import Dict, List, Tuple

from byteSources import ByteSource, FileSource
from zipErrors import (
    CentralDirectorySizeMismatch,
    EocdNotFound,
    IoFailure,
    OffsetOutOfRange,
    TruncatedCentralDirectory,
    TruncatedComment,
    UnsupportedCompressionMethod,
)
from zipHeaders import (
    COMPRESSION_DEFLATE,
    COMPRESSION_STORED,
    CentralDirectoryFileHeader,
    EndOfCentralDirectoryRecord,
    EofRecord,
    LocalFileHeader,
    PayloadRange,
)

logger = logging.getLogger(__name__)

EOCD_MAGIC = b"\x50\x4b\x05\x06"  # 0x06054b50 little-endian
MAX_COMMENT_LENGTH = 0xFFFF
SUPPORTED_COMPRESSION_METHODS = {COMPRESSION_STORED, COMPRESSION_DEFLATE}


def find_eocd(source: ByteSource) -> int:
    """
    Return the absolute offset of the End Of Central Directory record.

    The comment after the EOCD may itself contain the signature, so a match
    only counts if its comment length makes the record end exactly at EOF.
    The rightmost consistent match wins.
    """
    fixed_size = EndOfCentralDirectoryRecord.FIXED_SIZE
    total = source.size
    if total < fixed_size:
        raise EocdNotFound(f"Source is {total} bytes, too small to hold an EOCD")

    # No consistent EOCD can start before this
    window_start = max(0, total - fixed_size - MAX_COMMENT_LENGTH)
    tail = source.read_at(window_start, total - window_start)
    if len(tail) != total - window_start:
        raise IoFailure(
            f"Short read at {window_start:#x}: wanted {total - window_start}, got {len(tail)}"
        )

    search_end = len(tail) - fixed_size + len(EOCD_MAGIC)
    while True:
        pos = tail.rfind(EOCD_MAGIC, 0, search_end)
        if pos == -1:
            raise EocdNotFound("EOCD signature not found")
        comment_length = int.from_bytes(tail[pos + 20 : pos + 22], "little")
        offset = window_start + pos
        if offset + fixed_size + comment_length == total:
            logger.debug("Found EOCD at offset %#x", offset)
            return offset
        logger.debug(
            "Skipping EOCD signature at %#x: comment length %d doesn't reach EOF",
            offset,
            comment_length,
        )
        search_end = pos + len(EOCD_MAGIC) - 1


def read_eocd(source: ByteSource, offset: int) -> EofRecord:
    fixed_size = EndOfCentralDirectoryRecord.FIXED_SIZE
    data = source.read_at(offset, fixed_size)
    if len(data) < fixed_size:
        raise EocdNotFound(f"EOCD record at {offset:#x} is incomplete")
    record = EndOfCentralDirectoryRecord.unpack(data)

    comment = source.read_at(offset + fixed_size, record.comment_length)
    if len(comment) != record.comment_length:
        raise TruncatedComment(
            f"EOCD comment should be {record.comment_length} bytes, got {len(comment)}"
        )

    if record.num_cdr_on_disk != record.total_cdr:
        logger.warning(
            "EOCD says %d entries on this disk but %d in total; using the total",
            record.num_cdr_on_disk,
            record.total_cdr,
        )

    return EofRecord(
        record=record,
        comment=comment,
        start_offset=offset,
        end_offset=offset + fixed_size + record.comment_length,
    )


def read_central_directory(
    source: ByteSource, eocd: EndOfCentralDirectoryRecord
) -> List[CentralDirectoryFileHeader]:
    fixed_size = CentralDirectoryFileHeader.FIXED_SIZE
    cursor = eocd.offset_cdr_start
    entries = []
    for index in range(eocd.total_cdr):
        fixed = source.read_at(cursor, fixed_size)
        if len(fixed) < fixed_size:
            raise TruncatedCentralDirectory(
                f"Central directory entry {index} at {cursor:#x} is truncated"
            )
        header = CentralDirectoryFileHeader.unpack(fixed)

        trailing_length = header.size - fixed_size
        trailing = source.read_at(cursor + fixed_size, trailing_length)
        if len(trailing) < trailing_length:
            raise TruncatedCentralDirectory(
                f"Name/extra/comment of central directory entry {index} at {cursor:#x} is truncated"
            )

        entries.append(CentralDirectoryFileHeader.decode(fixed + trailing))
        cursor += header.size

    if cursor - eocd.offset_cdr_start != eocd.size_of_cdr:
        raise CentralDirectorySizeMismatch(
            f"Central directory entries span {cursor - eocd.offset_cdr_start} bytes, "
            f"EOCD declares {eocd.size_of_cdr}"
        )
    logger.debug("Read %d central directory entries", len(entries))
    return entries


def read_local_header(
    source: ByteSource, entry: CentralDirectoryFileHeader
) -> Tuple[LocalFileHeader, PayloadRange]:
    """
    Decode the local file header ``entry`` points at and locate its payload.

    The payload itself is not read. When a data descriptor follows the payload
    the local size fields may be zero, so the central directory's
    ``compressed_size`` is used instead.
    """
    fixed_size = LocalFileHeader.FIXED_SIZE
    offset = entry.relative_offset_localheader
    if offset + fixed_size > source.size:
        raise OffsetOutOfRange(
            f"Local header of {entry.name!r} at {offset:#x} runs past EOF ({source.size:#x})"
        )

    fixed = source.read_at(offset, fixed_size)
    if len(fixed) < fixed_size:
        raise OffsetOutOfRange(f"Local header of {entry.name!r} at {offset:#x} is truncated")
    header = LocalFileHeader.unpack(fixed)

    data_offset = offset + header.size
    if data_offset > source.size:
        raise OffsetOutOfRange(
            f"Name/extra of local header {entry.name!r} run past EOF ({source.size:#x})"
        )
    trailing = source.read_at(offset + fixed_size, header.size - fixed_size)
    if len(trailing) < header.size - fixed_size:
        raise OffsetOutOfRange(f"Name/extra of local header {entry.name!r} are truncated")
    header = LocalFileHeader.decode(fixed + trailing)

    if header.has_data_descriptor or entry.has_data_descriptor:
        compressed_size = entry.compressed_size
        logger.warning(
            "%r has a data descriptor, using central directory size %d",
            entry.name,
            compressed_size,
        )
    else:
        compressed_size = header.compressed_size
        if compressed_size != entry.compressed_size:
            logger.warning(
                "Compressed size of %r differs: local header %d, central directory %d",
                entry.name,
                compressed_size,
                entry.compressed_size,
            )

    if data_offset + compressed_size > source.size:
        raise OffsetOutOfRange(
            f"Payload of {entry.name!r} ({compressed_size} bytes at {data_offset:#x}) "
            f"runs past EOF ({source.size:#x})"
        )
    return header, PayloadRange(data_offset, compressed_size)


class ZipArchive:
    """
    Read-only structural view of a ZIP archive.

    The EOCD and the whole central directory are parsed when the archive is
    opened; local headers are resolved on first use and cached per entry.
    """

    def __init__(self, source: ByteSource, eof_record: EofRecord, entries, owns_source=False):
        self._source = source
        self._eof_record = eof_record
        self._entries = tuple(entries)
        self._owns_source = owns_source
        self._local_headers: Dict[int, Tuple[LocalFileHeader, PayloadRange]] = {}

    @classmethod
    def open(cls, source, close_source=False):
        """
        Open an archive from a path, a seekable binary file object or a ByteSource.

        Paths are opened and closed by the archive. Other sources stay open
        unless ``close_source`` is set. Either the EOCD and the full central
        directory parse, or an error is raised and nothing is left open.
        """
        owns_source = close_source
        if isinstance(source, ByteSource):
            byte_source = source
        elif isinstance(source, (str, os.PathLike)):
            byte_source = FileSource.from_path(source)
            owns_source = True
        else:
            byte_source = FileSource(source, owned=close_source)

        try:
            eocd_offset = find_eocd(byte_source)
            eof_record = read_eocd(byte_source, eocd_offset)
            entries = read_central_directory(byte_source, eof_record.record)
        except Exception:
            if owns_source:
                byte_source.close()
            raise
        return cls(byte_source, eof_record, entries, owns_source=owns_source)

    @property
    def eocd(self) -> EofRecord:
        return self._eof_record

    @property
    def comment(self) -> bytes:
        return self._eof_record.comment

    def entry_count(self) -> int:
        return len(self._entries)

    def entries(self) -> Tuple[CentralDirectoryFileHeader, ...]:
        return self._entries

    def namelist(self) -> List[str]:
        return [entry.name for entry in self._entries]

    def getinfo(self, name: str) -> CentralDirectoryFileHeader:
        for entry in self._entries:
            if entry.name == name:
                return entry
        raise KeyError(f"There is no item named {name!r} in the archive")

    def index_of(self, name: str) -> int:
        for index, entry in enumerate(self._entries):
            if entry.name == name:
                return index
        raise KeyError(f"There is no item named {name!r} in the archive")

    def _resolve(self, index: int) -> Tuple[LocalFileHeader, PayloadRange]:
        if not 0 <= index < len(self._entries):
            raise IndexError(f"Entry index {index} out of range (0..{len(self._entries) - 1})")
        resolved = self._local_headers.get(index)
        if resolved is None:
            resolved = read_local_header(self._source, self._entries[index])
            self._local_headers[index] = resolved
        return resolved

    def local_header(self, index: int) -> LocalFileHeader:
        return self._resolve(index)[0]

    def payload_range(self, index: int) -> PayloadRange:
        return self._resolve(index)[1]

    def read_raw(self, index: int) -> bytes:
        """Copy the raw, still compressed payload of entry ``index``."""
        header, payload = self._resolve(index)
        if header.compression_method not in SUPPORTED_COMPRESSION_METHODS:
            raise UnsupportedCompressionMethod(
                f"{header.name!r} uses compression method {header.compression_method}"
            )
        data = self._source.read_at(payload.offset, payload.length)
        if len(data) != payload.length:
            raise OffsetOutOfRange(
                f"Payload of {header.name!r} is truncated: wanted {payload.length}, got {len(data)}"
            )
        return data

    def close(self):
        if self._owns_source:
            self._source.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return f"<ZipArchive({self.entry_count()} entries, EOCD at {self._eof_record.start_offset:#x})>"
