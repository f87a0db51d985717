"""
Exception hierarchy

Input errors abort a run before any per-image work starts. Batch errors are
raised only after every image has been attempted and carry the full report.
"""
from typing import Any


class MirrorError(Exception):
    """
    Base class for all errors raised by offline_mirror
    """


class InputError(MirrorError):
    """
    Fatal error in the inputs of a run (list, references, credentials)
    """


class InvalidReferenceError(InputError):
    """
    An image reference string could not be parsed or has the wrong shape
    """

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invalid image reference {reference!r}: {reason}")


class NoImagesFoundError(InputError):
    """
    An image list turned out to be empty
    """


class ImageListNotFoundError(InputError):
    """
    An image list file does not exist
    """


class MissingCredentialsError(InputError):
    """
    Mirroring was requested without destination registry credentials
    """


class ExtractionError(InputError):
    """
    Image references could not be extracted from a pipeline
    """


class BatchError(MirrorError):
    """
    At least one image failed after the whole batch was attempted
    """

    def __init__(self, message: str, report: Any) -> None:
        self.report = report
        super().__init__(message)


class MirrorBatchError(BatchError):
    """
    One or more images could not be copied to the mirror registry
    """


class ResolveBatchError(BatchError):
    """
    One or more images could not be pulled, joined or aliased offline
    """
