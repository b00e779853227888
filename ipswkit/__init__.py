"""Read, inspect and fetch firmware restore archives, with JSON, MBN and lock-file helpers."""

__version__ = "0.1.0"

__all__ = ["firmware", "ipsw", "jsmn", "json_plist", "locking", "mbn"]