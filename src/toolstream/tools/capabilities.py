"""Per-model tool-calling capability cache."""

from __future__ import annotations

import logging

_logger = logging.getLogger(__name__)


class ModelCapabilityCache:
    """Write-once cache of whether a model supports native tool calling.

    Keyed by ``(model, base_url)``.  Entries are never overwritten, so
    concurrent runs only need the atomic insert of ``dict.setdefault``.
    """

    def __init__(self, seed: dict[tuple[str, str], bool] | None = None) -> None:
        self._entries: dict[tuple[str, str], bool] = dict(seed or {})

    @staticmethod
    def key(model: str, base_url: str | None) -> tuple[str, str]:
        return model, base_url or "default"

    def get(self, model: str, base_url: str | None) -> bool | None:
        return self._entries.get(self.key(model, base_url))

    def set_if_absent(self, model: str, base_url: str | None, supported: bool) -> bool:
        """Record *supported* unless already known; return the stored value."""
        stored = self._entries.setdefault(self.key(model, base_url), supported)
        if stored is supported:
            _logger.debug(
                "Cached tool support for %s@%s: %s", model, base_url, supported,
            )
        return stored

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
