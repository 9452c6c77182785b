from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Chave única de uma marcação: (id do membro, data)
ScheduleKey = Tuple[int, date]

HOURS_PER_DAY = 7.0
MANAGER_HOURS_PER_DAY = 3.5
WORKING_DAYS_PER_WEEK = 5


class WorkValue(str, Enum):
    """Valores possíveis de uma marcação de escala"""
    FULL_DAY = "1"
    HALF_DAY = "0.5"
    ABSENT = "X"

    @classmethod
    def _missing_(cls, value):
        # Aceita os nomes legíveis além dos valores gravados no serviço remoto
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "").replace(" ", "")
            aliases = {
                "fullday": cls.FULL_DAY,
                "full": cls.FULL_DAY,
                "1.0": cls.FULL_DAY,
                "halfday": cls.HALF_DAY,
                "half": cls.HALF_DAY,
                "absent": cls.ABSENT,
                "x": cls.ABSENT,
                "0": cls.ABSENT,
            }
            return aliases.get(normalized)
        return None

    @property
    def hours(self) -> float:
        """Horas equivalentes à marcação"""
        if self is WorkValue.FULL_DAY:
            return HOURS_PER_DAY
        if self is WorkValue.HALF_DAY:
            return HOURS_PER_DAY / 2
        return 0.0


class Role(str, Enum):
    """Papel do membro, normalizado na ingestão"""
    REGULAR = "regular"
    MANAGER = "manager"

    @property
    def hours_per_day(self) -> float:
        """Teto de horas por dia útil para o papel"""
        return MANAGER_HOURS_PER_DAY if self is Role.MANAGER else HOURS_PER_DAY


class EntryState(str, Enum):
    """Estado de uma célula da escala"""
    EMPTY = "empty"
    COMMITTED = "committed"
    PENDING = "pending"
    FAILED = "failed"


class SprintHealthStatus(str, Enum):
    """Saúde da sprint a partir do preenchimento"""
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class WorkingDay(BaseModel):
    """Dia do calendário da sprint, calculado sob demanda"""
    model_config = ConfigDict(frozen=True)

    date: date
    day_of_week: int = Field(..., ge=0, le=6)
    is_working_day: bool
    is_weekend: bool
    is_holiday: bool = False


class ScheduleEntry(BaseModel):
    """Marcação de um membro em uma data"""
    model_config = ConfigDict(frozen=True)

    member_id: int
    date: date
    value: WorkValue
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_weekend: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def parse_value(cls, v):
        """Converte aliases (FullDay, HalfDay, Absent) para o valor gravado"""
        if isinstance(v, str) and not isinstance(v, WorkValue):
            return WorkValue(v)
        return v

    @property
    def key(self) -> ScheduleKey:
        return (self.member_id, self.date)

    @property
    def hours(self) -> float:
        return self.value.hours


class OptimisticEntry(ScheduleEntry):
    """Marcação aplicada localmente e ainda não confirmada pelo serviço remoto"""

    pending: bool = True
    failed: bool = False
    edited_at: float = 0.0
    revision: int = 0
    error: Optional[str] = None

    @property
    def state(self) -> EntryState:
        return EntryState.FAILED if self.failed else EntryState.PENDING


class SprintWindow(BaseModel):
    """Janela da sprint fornecida pelo serviço remoto"""
    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date
    length_weeks: int = Field(..., ge=1, le=4)
    sprint_number: int = 1
    id: Optional[int] = None


class Team(BaseModel):
    """Time"""
    id: int
    name: str
    description: Optional[str] = None


class TeamMember(BaseModel):
    """Membro de um time"""
    id: int
    name: str
    team_id: Optional[int] = None
    email: Optional[str] = None
    role: Role = Role.REGULAR

    @model_validator(mode="before")
    @classmethod
    def normalize_role(cls, data):
        """Deriva o papel a partir dos diferentes campos usados pelo serviço remoto"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_role = data.get("role")
        flags = (data.pop("is_manager", None), data.pop("isManager", None))
        if isinstance(raw_role, Role):
            return data
        if any(flags) or (isinstance(raw_role, str) and raw_role.strip().lower() == "manager"):
            data["role"] = Role.MANAGER
        else:
            data["role"] = Role.REGULAR
        return data

    @property
    def is_manager(self) -> bool:
        return self.role is Role.MANAGER


class WorkOption(BaseModel):
    """Opção de marcação oferecida a um papel"""
    value: WorkValue
    label: str
    hours: float
    description: str


class SprintValidationResult(BaseModel):
    """Resultado da validação de configuração da sprint"""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class SprintProgress(BaseModel):
    """Progresso temporal da sprint"""
    time_progress: int
    days_elapsed: int
    days_remaining: int
    working_days_remaining: int


class SprintOverview(BaseModel):
    """Visão geral da sprint atual"""
    sprint_number: int
    start_date: date
    end_date: date
    total_days: int
    working_days: int
    progress: SprintProgress
    completion_percentage: int
    health: SprintHealthStatus


class MemberCapacitySummary(BaseModel):
    """Resumo de capacidade de um membro na sprint"""
    member_id: int
    member_name: str
    role: Role
    max_possible_hours: float
    actual_hours: float
    utilization_percentage: int
    working_days_filled: int
    total_working_days: int
    missing_days: int
    weekend_days_auto_filled: int
    completion_percentage: int

    @property
    def is_manager(self) -> bool:
        return self.role is Role.MANAGER


class TeamCapacitySummary(BaseModel):
    """Resumo de capacidade de um time na sprint"""
    team_id: int
    team_name: str
    sprint_number: Optional[int] = None
    total_members: int
    manager_count: int
    max_capacity_hours: float
    actual_hours: float
    utilization_percentage: int
    completion_percentage: int
    member_summaries: List[MemberCapacitySummary] = Field(default_factory=list)


class CompanyCapacitySummary(BaseModel):
    """Resumo de capacidade de todos os times"""
    total_teams: int
    total_members: int
    max_capacity_hours: float
    actual_hours: float
    utilization_percentage: int
    completion_percentage: int
    team_summaries: List[TeamCapacitySummary] = Field(default_factory=list)


class ScheduleState:
    """Estado da escala, pertencente à raiz de composição"""

    def __init__(self):
        self.authoritative: Dict[ScheduleKey, ScheduleEntry] = {}
        self.optimistic: Dict[ScheduleKey, OptimisticEntry] = {}
        self.teams: Dict[int, Team] = {}
        self.members: Dict[int, TeamMember] = {}
        self.current_sprint: Optional[SprintWindow] = None
        self.last_sync_timestamp: Optional[datetime] = None
        self.selected_team_id: Optional[int] = None
        self.active_tab_id: str = "overview"
        self.is_loading = False

    def effective_entry(self, key: ScheduleKey) -> Optional[ScheduleEntry]:
        """Marcação exibida: a otimista se existir, senão a autoritativa"""
        return self.optimistic.get(key) or self.authoritative.get(key)

    def effective_entries(self) -> Mapping[ScheduleKey, ScheduleEntry]:
        """Retorna uma cópia imutável das marcações efetivas"""
        merged = dict(self.authoritative)
        merged.update(self.optimistic)
        return MappingProxyType(merged)

    def members_of_team(self, team_id: int) -> List[TeamMember]:
        """Retorna os membros de um time ordenados pelo id"""
        return sorted(
            (m for m in self.members.values() if m.team_id == team_id),
            key=lambda m: m.id,
        )
