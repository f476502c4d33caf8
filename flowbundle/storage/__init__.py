"""Object storage gateway for bundle members."""

from flowbundle.storage.gateway import StorageGateway, SupabaseStorage, build_storage_key

__all__ = ["StorageGateway", "SupabaseStorage", "build_storage_key"]
