import struct
import zlib

import pytest

from zipHeaders import (
    CENTRAL_DIRECTORY_HEADER_SIGNATURE,
    EOCD_SIGNATURE,
    FLAG_DATA_DESCRIPTOR,
    LOCAL_FILE_HEADER_SIGNATURE,
    CentralDirectoryFileHeader,
    EndOfCentralDirectoryRecord,
    LocalFileHeader,
)

DOS_TIME = 0x6000  # 12:00:00
DOS_DATE = 0x5021  # 2020-01-01


class ArchiveBuilder:
    """Assembles archives byte by byte so tests can bend individual fields."""

    def __init__(self):
        self.members = []
        self.cd_offset = None
        self.eocd_offset = None

    def add(
        self,
        name: bytes,
        data: bytes,
        method=0,
        flags=0,
        uncompressed_size=None,
        local_sizes=True,
        local_offset=None,
        extra=b"",
        comment=b"",
    ):
        self.members.append(
            dict(
                name=name,
                data=data,
                method=method,
                flags=flags,
                uncompressed_size=len(data) if uncompressed_size is None else uncompressed_size,
                local_sizes=local_sizes,
                local_offset=local_offset,
                extra=extra,
                comment=comment,
            )
        )
        return self

    def build(self, comment=b"", size_of_cdr_delta=0) -> bytes:
        out = bytearray()
        central = []
        for member in self.members:
            offset = len(out)
            crc = zlib.crc32(member["data"]) & 0xFFFFFFFF
            sizes = (crc, len(member["data"]), member["uncompressed_size"])
            local = LocalFileHeader(
                LOCAL_FILE_HEADER_SIGNATURE,
                20,
                member["flags"],
                member["method"],
                DOS_TIME,
                DOS_DATE,
                *(sizes if member["local_sizes"] else (0, 0, 0)),
                len(member["name"]),
                len(member["extra"]),
                member["name"],
                member["extra"],
            )
            out += local.pack() + member["data"]
            if member["flags"] & FLAG_DATA_DESCRIPTOR:
                out += struct.pack("<4I", 0x08074B50, *sizes)
            central.append(
                CentralDirectoryFileHeader(
                    CENTRAL_DIRECTORY_HEADER_SIGNATURE,
                    20,
                    20,
                    member["flags"],
                    member["method"],
                    DOS_TIME,
                    DOS_DATE,
                    *sizes,
                    len(member["name"]),
                    len(member["extra"]),
                    len(member["comment"]),
                    0,
                    0,
                    0o644 << 16,
                    offset if member["local_offset"] is None else member["local_offset"],
                    member["name"],
                    member["extra"],
                    member["comment"],
                )
            )

        self.cd_offset = len(out)
        for header in central:
            out += header.pack()
        cd_size = len(out) - self.cd_offset

        self.eocd_offset = len(out)
        eocd = EndOfCentralDirectoryRecord(
            EOCD_SIGNATURE,
            0,
            0,
            len(central),
            len(central),
            cd_size + size_of_cdr_delta,
            self.cd_offset,
            len(comment),
        )
        out += eocd.pack() + comment
        return bytes(out)


@pytest.fixture
def builder():
    return ArchiveBuilder()


@pytest.fixture
def hello_zip(builder):
    return builder.add(b"a.txt", b"hello").build()
