"""Remote document store integration."""

from taskflow.remote.client import RemoteStore, RemoteStoreClient, normalize_document_id

__all__ = ["RemoteStore", "RemoteStoreClient", "normalize_document_id"]
