from acredita_kernel.storage.blob_store import LocalBlobStore

__all__ = ["LocalBlobStore"]
