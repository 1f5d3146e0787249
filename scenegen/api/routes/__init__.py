from . import documents

__all__ = ["documents"]
