"""
Exception types raised by the storage layers.

Expected negatives (unknown code, missing user, self-pairing) are not
exceptions; they come back as ``None`` or ``False``.
"""

from typing import Optional


class FlowersError(Exception):
    """Base class for all client errors"""


class RemoteStoreError(FlowersError):
    """A call against the remote document store failed"""

    def __init__(self, operation: str, cause: Optional[BaseException] = None, detail: str = ""):
        self.operation = operation
        self.cause = cause
        self.detail = detail or (f"{type(cause).__name__}: {cause}" if cause else "unknown error")
        super().__init__(f"{operation} failed: {self.detail}")


class DocumentNotFoundError(RemoteStoreError):
    """A field update targeted a document that does not exist"""

    def __init__(self, path: str):
        self.path = path
        super().__init__("update", detail=f"document '{path}' does not exist")


class DocumentDecodeError(FlowersError):
    """A cached or remote document could not be decoded into a model"""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        super().__init__(f"could not decode {source}: {cause}")
