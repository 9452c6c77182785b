from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class SyncSettings(BaseModel):
    """Configuração de debounce, sincronização e cache"""

    debounce_seconds: float = Field(default=0.5, gt=0)
    sync_interval_seconds: float = Field(default=300, gt=0)
    sprint_cache_ttl_seconds: float = Field(default=300, gt=0)
    team_cache_ttl_seconds: float = Field(default=120, gt=0)
    company_cache_ttl_seconds: float = Field(default=60, gt=0)
    max_cache_entries: int = Field(default=1000, gt=0)


class SetupConfig(BaseModel):
    """Configuração principal do sistema"""

    data_file: str
    session_file: str = Field(default="output/session.json")
    output_dir: str = Field(default="output")
    default_team_id: Optional[int] = None
    sync: SyncSettings = Field(default_factory=SyncSettings)


class SessionState(BaseModel):
    """Estado local que sobrevive entre sessões"""

    selected_team_id: Optional[int] = None
    active_tab_id: str = "overview"
    last_sync_timestamp: Optional[datetime] = None

    @field_validator("last_sync_timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, v):
        """Valida e converte o timestamp ISO gravado na sessão"""
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError as e:
                raise ValueError(f"Timestamp inválido: {v}. Formato esperado: ISO 8601") from e
        return v
