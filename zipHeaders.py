from dataclasses import dataclass
from typing import NamedTuple, Tuple
import struct

from zipErrors import (
    BadCentralDirectoryMagic,
    BadEocdMagic,
    BadLocalHeaderMagic,
    MalformedRecord,
)

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_HEADER_SIGNATURE = 0x02014B50
EOCD_SIGNATURE = 0x06054B50

COMPRESSION_STORED = 0
COMPRESSION_DEFLATE = 8

FLAG_ENCRYPTED = 1 << 0
FLAG_DATA_DESCRIPTOR = 1 << 3
FLAG_UTF8 = 1 << 11


def _check_size(cls, data: bytes):
    if len(data) < cls.FIXED_SIZE:
        raise MalformedRecord(
            f"{cls.__name__} needs {cls.FIXED_SIZE} bytes, got {len(data)}"
        )


def decode_dos_datetime(date: int, time: int) -> Tuple[int, int, int, int, int, int]:
    return (
        (date >> 9) + 1980,
        (date >> 5) & 0x0F,
        date & 0x1F,
        time >> 11,
        (time >> 5) & 0x3F,
        (time & 0x1F) * 2,
    )


class PayloadRange(NamedTuple):
    """Where an entry's raw (still compressed) bytes live in the archive."""

    offset: int
    length: int


class _EntryHeader:
    # Shared by local and central directory headers.

    @property
    def name(self) -> str:
        if self.flags & FLAG_UTF8:
            return self.file_name.decode("utf-8", errors="replace")
        return self.file_name.decode("cp437")

    @property
    def date_time(self):
        return decode_dos_datetime(self.last_mod_date, self.last_mod_time)

    @property
    def has_data_descriptor(self) -> bool:
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)

    @property
    def is_encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)


@dataclass(frozen=True)
class LocalFileHeader(_EntryHeader):
    FIXED_SIZE = 30  # Fixed size of the local file header (excluding variable fields)
    STRUCT_FORMAT = "<I5H3I2H"

    signature: int
    version_needed: int
    flags: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    file_name_length: int
    extra_field_length: int
    file_name: bytes = b""
    extra_field: bytes = b""

    @classmethod
    def unpack(cls, data: bytes, file_name: bytes = b"", extra_field: bytes = b""):
        _check_size(cls, data)
        header_struct = struct.unpack(cls.STRUCT_FORMAT, data[: cls.FIXED_SIZE])
        if header_struct[0] != LOCAL_FILE_HEADER_SIGNATURE:
            raise BadLocalHeaderMagic(
                f"Invalid local file header signature: {header_struct[0]:#010x}"
            )
        return cls(*header_struct, file_name=file_name, extra_field=extra_field)

    @classmethod
    def decode(cls, data: bytes):
        """Decode the fixed body and its trailing name/extra from one buffer."""
        header = cls.unpack(data)
        end = cls.FIXED_SIZE + header.file_name_length + header.extra_field_length
        if len(data) < end:
            raise MalformedRecord(f"LocalFileHeader needs {end} bytes, got {len(data)}")
        name_end = cls.FIXED_SIZE + header.file_name_length
        return cls.unpack(
            data,
            file_name=bytes(data[cls.FIXED_SIZE : name_end]),
            extra_field=bytes(data[name_end:end]),
        )

    @property
    def size(self) -> int:
        return self.FIXED_SIZE + self.file_name_length + self.extra_field_length

    def pack(self) -> bytes:
        return (
            struct.pack(
                self.STRUCT_FORMAT,
                self.signature,
                self.version_needed,
                self.flags,
                self.compression_method,
                self.last_mod_time,
                self.last_mod_date,
                self.crc32,
                self.compressed_size,
                self.uncompressed_size,
                len(self.file_name),
                len(self.extra_field),
            )
            + self.file_name
            + self.extra_field
        )


@dataclass(frozen=True)
class CentralDirectoryFileHeader(_EntryHeader):
    FIXED_SIZE = 46  # Fixed size of the central directory file header (excluding variable fields)
    STRUCT_FORMAT = "<I6H3I5H2I"

    signature: int
    version_made_by: int
    version_needed: int
    flags: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    file_name_length: int
    extra_field_length: int
    file_comment_length: int
    disk_number_start: int
    internal_attributes: int
    external_attributes: int
    relative_offset_localheader: int
    file_name: bytes = b""
    extra_field: bytes = b""
    file_comment: bytes = b""

    @classmethod
    def unpack(
        cls,
        data: bytes,
        file_name: bytes = b"",
        extra_field: bytes = b"",
        file_comment: bytes = b"",
    ):
        _check_size(cls, data)
        header_struct = struct.unpack(cls.STRUCT_FORMAT, data[: cls.FIXED_SIZE])
        if header_struct[0] != CENTRAL_DIRECTORY_HEADER_SIGNATURE:
            raise BadCentralDirectoryMagic(
                f"Invalid central directory file header signature: {header_struct[0]:#010x}"
            )
        return cls(
            *header_struct,
            file_name=file_name,
            extra_field=extra_field,
            file_comment=file_comment,
        )

    @classmethod
    def decode(cls, data: bytes):
        """Decode the fixed body and its trailing name/extra/comment from one buffer."""
        header = cls.unpack(data)
        name_end = cls.FIXED_SIZE + header.file_name_length
        extra_end = name_end + header.extra_field_length
        end = extra_end + header.file_comment_length
        if len(data) < end:
            raise MalformedRecord(
                f"CentralDirectoryFileHeader needs {end} bytes, got {len(data)}"
            )
        return cls.unpack(
            data,
            file_name=bytes(data[cls.FIXED_SIZE : name_end]),
            extra_field=bytes(data[name_end:extra_end]),
            file_comment=bytes(data[extra_end:end]),
        )

    @property
    def size(self) -> int:
        return (
            self.FIXED_SIZE
            + self.file_name_length
            + self.extra_field_length
            + self.file_comment_length
        )

    @property
    def is_dir(self) -> bool:
        return self.file_name.endswith(b"/")

    @property
    def comment(self) -> str:
        if self.flags & FLAG_UTF8:
            return self.file_comment.decode("utf-8", errors="replace")
        return self.file_comment.decode("cp437")

    def pack(self) -> bytes:
        return (
            struct.pack(
                self.STRUCT_FORMAT,
                self.signature,
                self.version_made_by,
                self.version_needed,
                self.flags,
                self.compression_method,
                self.last_mod_time,
                self.last_mod_date,
                self.crc32,
                self.compressed_size,
                self.uncompressed_size,
                len(self.file_name),
                len(self.extra_field),
                len(self.file_comment),
                self.disk_number_start,
                self.internal_attributes,
                self.external_attributes,
                self.relative_offset_localheader,
            )
            + self.file_name
            + self.extra_field
            + self.file_comment
        )


@dataclass(frozen=True)
class EndOfCentralDirectoryRecord:
    FIXED_SIZE = 22  # Fixed size of the EOCD (excluding the comment)
    STRUCT_FORMAT = "<I4H2IH"

    signature: int
    disk_number: int
    disk_with_cd_start: int
    num_cdr_on_disk: int
    total_cdr: int
    size_of_cdr: int
    offset_cdr_start: int
    comment_length: int

    @classmethod
    def unpack(cls, data: bytes):
        _check_size(cls, data)
        header_struct = struct.unpack(cls.STRUCT_FORMAT, data[: cls.FIXED_SIZE])
        if header_struct[0] != EOCD_SIGNATURE:
            raise BadEocdMagic(f"EOCD signature mismatch: {header_struct[0]:#010x}")
        return cls(*header_struct)

    def pack(self) -> bytes:
        return struct.pack(
            self.STRUCT_FORMAT,
            self.signature,
            self.disk_number,
            self.disk_with_cd_start,
            self.num_cdr_on_disk,
            self.total_cdr,
            self.size_of_cdr,
            self.offset_cdr_start,
            self.comment_length,
        )


@dataclass(frozen=True)
class EofRecord:
    """The fixed EOCD body plus its comment and where both sit in the archive."""

    record: EndOfCentralDirectoryRecord
    comment: bytes
    start_offset: int
    end_offset: int
