"""Exceptions raised by the storage engine."""


class NutsError(Exception):
    """Base class for all engine errors."""

    default_message = "nutskv error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class StartKeyError(NutsError):
    """A range scan was given a start key greater than its end key."""

    default_message = "err start key"


class ScansNoResultError(NutsError):
    """A range, prefix or prefix-and-search scan found nothing."""

    default_message = "range scans or prefix or prefix and search scans no result"


class PrefixSearchScansNoResultError(NutsError):
    """A prefix-and-search scan found nothing."""

    default_message = "prefix and search scans no result"


class KeyNotFoundError(NutsError):
    """The key is not in the tree."""

    default_message = "key not found"


class BadRegexpError(NutsError):
    """A malformed regular expression was given."""

    default_message = "bad regular expression"


class CrcError(NutsError):
    """A stored checksum does not match the data read."""

    default_message = "crc error"


class NodeAddressError(NutsError):
    """A node was requested at an address that cannot hold one."""

    default_message = "invalid node address"


class KeyPosMapError(NutsError):
    """Key positions were required but no key position map was set."""

    default_message = "not set keyPosMap"