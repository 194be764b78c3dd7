from .storage import KvEntry

__all__ = [
    'KvEntry',
]
