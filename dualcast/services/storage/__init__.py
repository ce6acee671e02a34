from .media_store import MediaStore, MediaStoreError, StoredMedia, get_media_store

__all__ = ["MediaStore", "MediaStoreError", "StoredMedia", "get_media_store"]
