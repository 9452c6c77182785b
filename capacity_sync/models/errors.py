from datetime import date
from typing import List, Optional


class CapacitySyncError(Exception):
    """Erro base do sistema"""


class ValidationError(CapacitySyncError, ValueError):
    """Configuração de sprint inválida ou opção de trabalho não permitida para o papel"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors: List[str] = errors or [message]


class TransientWriteError(CapacitySyncError):
    """Falha ao gravar uma marcação no serviço remoto"""

    def __init__(self, member_id: int, entry_date: date, reason: str):
        super().__init__(
            f"Falha ao gravar marcação do membro {member_id} em {entry_date}: {reason}"
        )
        self.member_id = member_id
        self.date = entry_date
        self.reason = reason


class SyncError(CapacitySyncError):
    """Falha em um ciclo de sincronização incremental"""


class ConfigWarning(UserWarning):
    """Aviso informativo da validação de configuração da sprint"""
