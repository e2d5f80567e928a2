from . import access

__all__ = ["access"]
