from headshot.services.storage.object_storage import ObjectStorage

__all__ = ["ObjectStorage"]
