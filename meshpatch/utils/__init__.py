from .atomic_write import atomic_destination, write_bytes_atomic, write_json_atomic, write_text_atomic

__all__ = [
    "atomic_destination",
    "write_bytes_atomic",
    "write_json_atomic",
    "write_text_atomic",
]
