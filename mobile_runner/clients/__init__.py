from .base import ObjectStore, RemoteTestService

__all__ = ["ObjectStore", "RemoteTestService"]
