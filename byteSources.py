from abc import ABC, abstractmethod
import io
import logging
import os
import threading

import requests

from zipErrors import IoFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds, per HTTP request


class ByteSource(ABC):
    """A sized, random-access source of archive bytes.

    ``read_at`` may return fewer bytes than asked for when the request runs
    past the end of the source; callers decide whether that is an error.
    """

    size = 0

    @abstractmethod
    def read_at(self, offset: int, length: int) -> bytes:
        pass

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FileSource(ByteSource):
    def __init__(self, fileobj, owned: bool = False):
        self._file = fileobj
        self._owned = owned
        # seek and read are not atomic together
        self._lock = threading.Lock()
        try:
            self.size = fileobj.seek(0, io.SEEK_END)
        except (OSError, ValueError) as e:
            raise IoFailure(f"Couldn't seek: {e}") from e

    @classmethod
    def from_path(cls, path):
        try:
            fileobj = open(os.fspath(path), "rb")
        except OSError as e:
            raise IoFailure(f"Couldn't open {path}: {e}") from e
        try:
            return cls(fileobj, owned=True)
        except IoFailure:
            fileobj.close()
            raise

    @classmethod
    def from_bytes(cls, data: bytes):
        return cls(io.BytesIO(data), owned=True)

    def read_at(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError(f"Invalid read: offset={offset} length={length}")
        with self._lock:
            try:
                self._file.seek(offset)
                return self._file.read(length)
            except (OSError, ValueError) as e:
                raise IoFailure(f"Couldn't read {length} bytes at {offset:#x}: {e}") from e

    def close(self):
        if self._owned:
            self._file.close()


class RemoteFileSource(ByteSource):
    """Ranged reads of a file served over HTTP(S)."""

    def __init__(self, url: str, session=None, timeout=DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout
        self._owned = session is None
        self.session = session if session is not None else requests.Session()
        self._lock = threading.Lock()
        try:
            response = self.session.head(url, allow_redirects=True, timeout=timeout)
        except requests.RequestException as e:
            self.close()
            raise IoFailure(f"HEAD {url} failed: {e}") from e
        if response.status_code == 200 and "Content-Length" in response.headers:
            self.size = int(response.headers["Content-Length"])
        else:
            self.close()
            raise IoFailure(
                f"Failed to retrieve content length. Status code: {response.status_code}"
            )
        logger.debug("Remote archive %s is %d bytes", url, self.size)

    def fetch_range(self, start_byte: int, end_byte: int) -> bytes:
        headers = {"Range": f"bytes={start_byte}-{end_byte}"}
        with self._lock:
            try:
                response = self.session.get(self.url, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise IoFailure(f"GET {self.url} failed: {e}") from e
        if response.status_code == 206:  # Partial content
            return response.content
        if response.status_code == 200:
            # Server ignored the Range header and sent everything
            return response.content[start_byte : end_byte + 1]
        raise IoFailure(f"Failed to fetch byte range. Status code: {response.status_code}")

    def read_at(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError(f"Invalid read: offset={offset} length={length}")
        end = min(offset + length, self.size)
        if end <= offset:
            return b""
        return self.fetch_range(offset, end - 1)

    def close(self):
        if self._owned:
            self.session.close()
