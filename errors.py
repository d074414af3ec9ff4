"""Failure taxonomy for the shift store."""


class StoreError(Exception):
    """Base class for every error raised by the data store."""


class StorageUnavailable(StoreError):
    """The data file exists but cannot be read or parsed.

    Never masked by reinitializing: that is reserved for a missing file.
    """


class SaveFailed(StoreError):
    """The authoritative write (temp file + rename) did not complete."""


class InvalidStatusTransition(StoreError):
    def __init__(self, previous, new):
        super().__init__(f"shift status cannot move from {previous!r} to {new!r}")
        self.previous = previous
        self.new = new


class UnknownSettingKey(StoreError):
    def __init__(self, key: str):
        super().__init__(f"unknown setting: {key}")
        self.key = key
