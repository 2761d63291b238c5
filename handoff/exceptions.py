"""
Exception types for the handoff case layer.

Taxonomy:
- ValidationError: malformed disposition or record, rejected synchronously.
  Case state is unchanged when this is raised.
- InvalidReference: a record points at a note that is not one of the
  conflict's sources.
- StorageError: storage medium unavailable, full, or serialization failed.
  Recoverable - the in-memory working set is never rolled back.
- SaveInProgressError: a second save() was requested while one is pending.

Usage:
    from handoff.exceptions import ValidationError, StorageError
"""


class HandoffError(Exception):
    """Base class for all handoff errors"""


class ValidationError(HandoffError, ValueError):
    """Malformed disposition, note, or case record"""


class InvalidReference(ValidationError):
    """Record references a source that the conflict does not list"""


class StorageError(HandoffError):
    """Persistent medium could not be read or written"""


class SaveInProgressError(HandoffError):
    """A save is already in flight for this session"""
