from __future__ import annotations


class StackManagerError(RuntimeError):
    pass


class NetworkUnavailable(StackManagerError):
    """The remote could not be reached at all (as opposed to an empty reply)."""


class DownloadWriteFailure(StackManagerError):
    pass


class MissingIdentity(StackManagerError):
    pass


class CoordinatorUnreachable(StackManagerError):
    pass


class ManifestParseFailure(StackManagerError):
    pass
