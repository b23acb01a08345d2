from .json_file import JsonFileStorage
from .protocol import Storage

__all__ = ["Storage", "JsonFileStorage"]
