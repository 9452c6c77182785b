from typing import Dict, Hashable, List, Optional


def should_flush(now: float, last_edit: float, debounce_seconds: float) -> bool:
    """Decide se uma edição já saiu da janela de debounce"""
    return now - last_edit >= debounce_seconds


class DebounceTracker:
    """Registra o instante da última edição de cada chave pendente"""

    def __init__(self, debounce_seconds: float):
        self.debounce_seconds = debounce_seconds
        self._last_edit: Dict[Hashable, float] = {}

    def touch(self, key: Hashable, now: float) -> None:
        """Registra uma edição, reiniciando a janela da chave"""
        self._last_edit[key] = now

    def discard(self, key: Hashable) -> Optional[float]:
        return self._last_edit.pop(key, None)

    def due(self, now: float) -> List[Hashable]:
        """Chaves cuja janela de debounce terminou"""
        return [
            key
            for key, last_edit in self._last_edit.items()
            if should_flush(now, last_edit, self.debounce_seconds)
        ]

    def remaining(self, key: Hashable, now: float) -> Optional[float]:
        """Segundos restantes até a chave poder ser enviada"""
        last_edit = self._last_edit.get(key)
        if last_edit is None:
            return None
        return max(0.0, self.debounce_seconds - (now - last_edit))

    def __contains__(self, key: Hashable) -> bool:
        return key in self._last_edit

    def __len__(self) -> int:
        return len(self._last_edit)

    def keys(self) -> List[Hashable]:
        return list(self._last_edit)
