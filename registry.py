# ========================================================
# ================  registry.py  =========================
# ========================================================
from __future__ import annotations
from typing import Any, Dict, List, Tuple, TYPE_CHECKING

from loggers import DEBUG_LOGGER

if TYPE_CHECKING:  # pragma: no cover
    from submanagers import BaseChannel  # type: ignore


class ChannelRegistry:
    """
    Detection channel classes by name, kept in registration order.

    The session installs and attaches channels in this order: transport
    listeners first, page scripts next, the document scanner last.
    """

    def __init__(self) -> None:
        self._entries: List[Tuple[str, type["BaseChannel"]]] = []

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def _index(self, key: str) -> int:
        for i, (existing, _) in enumerate(self._entries):
            if existing == key:
                return i
        return -1

    def register(self, name: str, cls: type["BaseChannel"]) -> None:
        key = self._key(name)
        i = self._index(key)
        if i >= 0:
            DEBUG_LOGGER.log_message(f"[ChannelRegistry] Replacing channel '{key}' ({self._entries[i][1].__name__} -> {cls.__name__})")
            self._entries[i] = (key, cls)
        else:
            self._entries.append((key, cls))

    def names(self) -> List[str]:
        return [key for key, _ in self._entries]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._index(self._key(name)) >= 0

    def get(self, name: str) -> type["BaseChannel"]:
        i = self._index(self._key(name))
        if i < 0:
            raise KeyError(f"Unknown channel '{name}'. Available: {', '.join(self.names()) or '(none)'}")
        return self._entries[i][1]

    def build(self, **kwargs: Any) -> Dict[str, "BaseChannel"]:
        """One instance of every registered channel, all sharing the same constructor arguments."""
        return {key: cls(**kwargs) for key, cls in self._entries}


CHANNELS = ChannelRegistry()
