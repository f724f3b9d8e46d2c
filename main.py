import argparse
import logging
from pathlib import Path
import re
import sys

from byteSources import RemoteFileSource
from zipArchive import ZipArchive
from zipErrors import ZipError

logger = logging.getLogger("zipstruct")

COMPRESSION_NAMES = {0: "stored", 8: "deflate"}


def open_archive(location):
    if re.match(r"https?://", location, re.IGNORECASE):
        return ZipArchive.open(RemoteFileSource(location), close_source=True)
    return ZipArchive.open(location)


def list_entries(archive, pattern=None, out=None):
    out = out or sys.stdout
    print(
        f"{archive.entry_count()} entries, central directory at "
        f"{archive.eocd.record.offset_cdr_start:#x} ({archive.eocd.record.size_of_cdr} bytes)",
        file=out,
    )
    for index, entry in enumerate(archive.entries()):
        if pattern and not pattern.match(entry.name):
            continue
        method = COMPRESSION_NAMES.get(entry.compression_method, str(entry.compression_method))
        try:
            payload = archive.payload_range(index)
            where = f"{payload.offset:#x}+{payload.length}"
        except ZipError as e:
            # A broken entry doesn't stop the listing
            logger.warning("%s: %s", entry.name, e)
            where = "unresolved"
        print(
            f"- {entry.name} ({method}, Compressed: {entry.compressed_size} bytes, "
            f"Uncompressed: {entry.uncompressed_size} bytes, CRC32: {entry.crc32:08x}, "
            f"Payload: {where})",
            file=out,
        )


def dump_raw(archive, name, output):
    index = archive.index_of(name)
    data = archive.read_raw(index)
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("Wrote %d raw bytes of %s to %s", len(data), name, path)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Inspect the structure of a ZIP file, local or served over HTTP."
    )
    parser.add_argument("archive", type=str, help="Path or URL of the ZIP file to inspect.")
    parser.add_argument(
        "re", type=str, nargs="?", default=None, help="re pattern to filter listed entries."
    )
    parser.add_argument("--raw", metavar="NAME", help="Entry whose raw payload should be written.")
    parser.add_argument("-o", "--output", help="Where to write the raw payload (default: NAME).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log parsing details.")
    args = parser.parse_args(argv)
    if args.output and not args.raw:
        parser.error("--output only applies together with --raw")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    pattern = re.compile(args.re, re.IGNORECASE) if args.re else None
    try:
        with open_archive(args.archive) as archive:
            if args.raw:
                dump_raw(archive, args.raw, args.output or Path(args.raw).name)
            else:
                list_entries(archive, pattern)
    except KeyError as e:
        logger.error(e.args[0])
        return 1
    except ZipError as e:
        logger.error("Error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
