from .base import Backend, FetchScope
from .local import LocalBackend
from .remote import RemoteBackend

__all__ = ["Backend", "FetchScope", "LocalBackend", "RemoteBackend"]
