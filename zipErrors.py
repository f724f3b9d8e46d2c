class ZipError(Exception):
    """Base class for every error raised while reading an archive."""


class IoFailure(ZipError):
    """The underlying open/seek/read failed."""


class ZipFormatError(ZipError):
    """The archive structure is invalid or inconsistent."""


class ZipUnsupportedFeature(ZipError):
    pass


class MalformedRecord(ZipFormatError):
    pass


class EocdNotFound(ZipFormatError):
    pass


class BadEocdMagic(ZipFormatError):
    pass


class TruncatedComment(ZipFormatError):
    pass


class BadCentralDirectoryMagic(ZipFormatError):
    pass


class CentralDirectorySizeMismatch(ZipFormatError):
    pass


class TruncatedCentralDirectory(ZipFormatError):
    pass


class BadLocalHeaderMagic(ZipFormatError):
    pass


class OffsetOutOfRange(ZipFormatError):
    pass


class UnsupportedCompressionMethod(ZipUnsupportedFeature):
    pass
