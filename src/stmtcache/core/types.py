from typing import Any, Callable

EvictionCallback = Callable[[Any, Any], None]


class _Missing:
    """Sentinel for lookups that found nothing; ``None`` is a valid cached value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
