# app/core/errors.py
# Exception taxonomy for a link pass. Every failure that aborts a run is a
# LinkarrError; expected outcomes (duplicate content, name collisions) are not.


class LinkarrError(Exception):
    """Base class for errors that abort a run."""


class ConfigError(LinkarrError):
    """linkarr.toml exists but cannot be parsed or holds invalid values."""


class TraversalError(LinkarrError):
    """Directory enumeration under the input root failed."""


class TimestampError(LinkarrError):
    """Capture time could not be resolved for a reason other than missing metadata."""

    def __init__(self, path, reason: str):
        super().__init__(f"while resolving capture time for {path}: {reason}")
        self.path = path
        self.reason = reason


class DigestError(LinkarrError):
    """A file could not be opened or fully read while hashing."""

    def __init__(self, path, cause: Exception):
        super().__init__(f"while hashing {path}: {cause}")
        self.path = path
        self.cause = cause


class StoreError(LinkarrError):
    """The state database failed; never retried."""


class CommitError(LinkarrError):
    """Creating a directory or link failed, or the state machine was violated."""
