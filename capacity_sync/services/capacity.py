from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Union
from loguru import logger

from ..models.entities import (
    CompanyCapacitySummary,
    MemberCapacitySummary,
    Role,
    ScheduleEntry,
    SprintHealthStatus,
    SprintWindow,
    Team,
    TeamCapacitySummary,
    TeamMember,
    WorkingDay,
    WorkOption,
    WorkValue,
)
from ..models.errors import ValidationError
from .calendar import get_working_days

WEEKEND_REASON = "Weekend (auto-generated)"

_REGULAR_OPTIONS = [
    WorkOption(value=WorkValue.FULL_DAY, label="1", hours=7.0, description="Dia inteiro"),
    WorkOption(value=WorkValue.HALF_DAY, label="0.5", hours=3.5, description="Meio período"),
    WorkOption(value=WorkValue.ABSENT, label="X", hours=0.0, description="Indisponível/Ausente"),
]

_MANAGER_OPTIONS = [
    WorkOption(value=WorkValue.HALF_DAY, label="0.5", hours=3.5, description="Meio período (gestão)"),
    WorkOption(value=WorkValue.ABSENT, label="X", hours=0.0, description="Indisponível/Ausente"),
]


def hours_for_value(value: Union[WorkValue, str]) -> float:
    """Converte uma marcação em horas (1 = 7h, 0.5 = 3.5h, X = 0h)"""
    return WorkValue(value).hours


def work_options_for_role(role: Role) -> List[WorkOption]:
    """Opções de marcação permitidas para o papel"""
    return list(_MANAGER_OPTIONS if role is Role.MANAGER else _REGULAR_OPTIONS)


def is_valid_work_option(value: Union[WorkValue, str], is_manager: bool) -> bool:
    """
    Verifica se a marcação é permitida para o papel

    Args:
        value: Marcação (aceita "1", "0.5", "X" ou FullDay/HalfDay/Absent)
        is_manager: Se o membro é gestor

    Returns:
        bool: True se a marcação é permitida
    """
    try:
        parsed = WorkValue(value)
    except ValueError:
        return False
    role = Role.MANAGER if is_manager else Role.REGULAR
    return any(option.value is parsed for option in work_options_for_role(role))


def validate_work_option(value: Union[WorkValue, str], role: Role) -> WorkValue:
    """Valida a marcação para o papel, levantando ValidationError se não for permitida"""
    if not is_valid_work_option(value, role is Role.MANAGER):
        allowed = ", ".join(o.label for o in work_options_for_role(role))
        raise ValidationError(
            f"Marcação '{value}' não permitida para papel {role.value} (permitidas: {allowed})"
        )
    return WorkValue(value)


def work_option_recommendation(role: Role) -> Dict[str, object]:
    """Valor padrão, opções e restrições de marcação para o papel"""
    if role is Role.MANAGER:
        return {
            "default_value": WorkValue.HALF_DAY,
            "available_options": [o.value for o in _MANAGER_OPTIONS],
            "restrictions": [
                "Gestores não podem marcar dia inteiro devido às responsabilidades de gestão",
                "Padrão de meio período para tarefas de gestão",
            ],
        }
    return {
        "default_value": WorkValue.FULL_DAY,
        "available_options": [o.value for o in _REGULAR_OPTIONS],
        "restrictions": [],
    }


def auto_generate_weekend_entries(member_id: int, days: Iterable[WorkingDay]) -> List[ScheduleEntry]:
    """Gera marcações de ausência para os dias de fim de semana"""
    return [
        ScheduleEntry(
            member_id=member_id,
            date=day.date,
            value=WorkValue.ABSENT,
            reason=WEEKEND_REASON,
            is_weekend=True,
        )
        for day in days
        if day.is_weekend
    ]


def _percentage(part: float, total: float) -> int:
    return round(part / total * 100) if total > 0 else 0


def compute_member_summary(
    member: TeamMember,
    working_days: List[WorkingDay],
    entries: Mapping[date, ScheduleEntry],
) -> MemberCapacitySummary:
    """
    Calcula o resumo de capacidade de um membro

    Marcações de fim de semana não entram nas horas nem no denominador do
    preenchimento.

    Args:
        member: Membro do time
        working_days: Calendário da sprint
        entries: Marcações do membro indexadas pela data

    Returns:
        MemberCapacitySummary: Resumo do membro
    """
    business_days = [d for d in working_days if d.is_working_day]
    max_possible_hours = len(business_days) * member.role.hours_per_day

    actual_hours = 0.0
    filled = 0
    weekend_auto_filled = 0
    for day in working_days:
        entry = entries.get(day.date)
        if entry is None:
            continue
        if day.is_weekend:
            if entry.value is WorkValue.ABSENT:
                weekend_auto_filled += 1
            continue
        filled += 1
        actual_hours += entry.hours

    return MemberCapacitySummary(
        member_id=member.id,
        member_name=member.name,
        role=member.role,
        max_possible_hours=max_possible_hours,
        actual_hours=actual_hours,
        utilization_percentage=_percentage(actual_hours, max_possible_hours),
        working_days_filled=filled,
        total_working_days=len(business_days),
        missing_days=len(business_days) - filled,
        weekend_days_auto_filled=weekend_auto_filled,
        completion_percentage=_percentage(filled, len(business_days)),
    )


def compute_team_summary(
    team: Team,
    members: List[TeamMember],
    sprint: SprintWindow,
    entries_by_member: Mapping[int, Mapping[date, ScheduleEntry]],
) -> TeamCapacitySummary:
    """
    Agrega os resumos dos membros de um time na sprint

    Args:
        team: Time
        members: Membros do time
        sprint: Janela da sprint
        entries_by_member: Marcações por membro e data

    Returns:
        TeamCapacitySummary: Resumo do time
    """
    days = get_working_days(sprint.start_date, sprint.end_date)
    member_summaries = [
        compute_member_summary(member, days, entries_by_member.get(member.id, {}))
        for member in members
    ]

    max_capacity = sum(s.max_possible_hours for s in member_summaries)
    actual = sum(s.actual_hours for s in member_summaries)
    total_working_days = sum(1 for d in days if d.is_working_day)
    total_possible_entries = len(members) * total_working_days
    total_filled = sum(s.working_days_filled for s in member_summaries)

    summary = TeamCapacitySummary(
        team_id=team.id,
        team_name=team.name,
        sprint_number=sprint.sprint_number,
        total_members=len(members),
        manager_count=sum(1 for m in members if m.is_manager),
        max_capacity_hours=max_capacity,
        actual_hours=actual,
        utilization_percentage=_percentage(actual, max_capacity),
        completion_percentage=_percentage(total_filled, total_possible_entries),
        member_summaries=member_summaries,
    )
    logger.debug(
        f"Resumo do time {team.name}: {actual:.1f}h de {max_capacity:.1f}h "
        f"({summary.utilization_percentage}%)"
    )
    return summary


def compute_company_summary(team_summaries: List[TeamCapacitySummary]) -> CompanyCapacitySummary:
    """Agrega os resumos de todos os times"""
    max_capacity = sum(t.max_capacity_hours for t in team_summaries)
    actual = sum(t.actual_hours for t in team_summaries)
    filled = sum(m.working_days_filled for t in team_summaries for m in t.member_summaries)
    possible = sum(m.total_working_days for t in team_summaries for m in t.member_summaries)
    return CompanyCapacitySummary(
        total_teams=len(team_summaries),
        total_members=sum(t.total_members for t in team_summaries),
        max_capacity_hours=max_capacity,
        actual_hours=actual,
        utilization_percentage=_percentage(actual, max_capacity),
        completion_percentage=_percentage(filled, possible),
        team_summaries=team_summaries,
    )


def sprint_health_status(completion_percentage: int, days_remaining: int) -> SprintHealthStatus:
    """Classifica a saúde da sprint a partir do preenchimento e dos dias restantes"""
    if completion_percentage >= 90:
        return SprintHealthStatus.EXCELLENT
    if completion_percentage >= 75:
        return SprintHealthStatus.GOOD
    if completion_percentage >= 50 or days_remaining > 3:
        return SprintHealthStatus.WARNING
    return SprintHealthStatus.CRITICAL


def group_entries_by_member(
    entries: Iterable[ScheduleEntry],
    member_ids: Optional[Iterable[int]] = None,
) -> Dict[int, Dict[date, ScheduleEntry]]:
    """Indexa marcações por membro e data, opcionalmente filtrando membros"""
    allowed = set(member_ids) if member_ids is not None else None
    grouped: Dict[int, Dict[date, ScheduleEntry]] = {}
    for entry in entries:
        if allowed is not None and entry.member_id not in allowed:
            continue
        grouped.setdefault(entry.member_id, {})[entry.date] = entry
    return grouped
