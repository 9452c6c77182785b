import warnings
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from loguru import logger

from ..models.entities import (
    SprintProgress,
    SprintValidationResult,
    SprintWindow,
    WorkingDay,
    WORKING_DAYS_PER_WEEK,
)
from ..models.errors import ConfigWarning, ValidationError

# Domingo a quinta (0-4) são dias úteis; sexta e sábado (5-6) são fim de semana
WORKING_DAYS = (0, 1, 2, 3, 4)
WEEKEND_DAYS = (5, 6)
MIN_SPRINT_WEEKS = 1
MAX_SPRINT_WEEKS = 4


def day_of_week(day: date) -> int:
    """Dia da semana com domingo = 0 e sábado = 6"""
    return (day.weekday() + 1) % 7


def is_working_day(day: date) -> bool:
    return day_of_week(day) in WORKING_DAYS


def get_working_days(start: date, end: date) -> List[WorkingDay]:
    """
    Gera o calendário da sprint entre duas datas (inclusivas)

    Args:
        start: Data inicial
        end: Data final

    Returns:
        List[WorkingDay]: Dias em ordem, vazio se start > end
    """
    days = []
    current = start
    while current <= end:
        dow = day_of_week(current)
        weekend = dow in WEEKEND_DAYS
        days.append(
            WorkingDay(
                date=current,
                day_of_week=dow,
                is_working_day=not weekend,
                is_weekend=weekend,
                # TODO: integrar calendário de feriados quando o produto definir a regra
                is_holiday=False,
            )
        )
        current += timedelta(days=1)
    return days


def count_working_days(start: date, end: date) -> int:
    return sum(1 for day in get_working_days(start, end) if day.is_working_day)


def calculate_sprint_end_date(start: date, length_weeks: int) -> date:
    """
    Calcula a data final da sprint contando apenas dias úteis

    A data inicial conta se for dia útil. A data retornada é o último dia útil
    necessário para completar length_weeks * 5 dias úteis.

    Args:
        start: Data de início da sprint
        length_weeks: Duração em semanas

    Returns:
        date: Último dia útil da sprint
    """
    if length_weeks < 1:
        raise ValidationError(f"Duração da sprint inválida: {length_weeks} semanas")

    needed = length_weeks * WORKING_DAYS_PER_WEEK
    current = start
    counted = 0
    while True:
        if is_working_day(current):
            counted += 1
            if counted == needed:
                return current
        current += timedelta(days=1)


def validate_sprint_config(start: date, end: date, length_weeks: int) -> SprintValidationResult:
    """
    Valida datas e duração da sprint

    Divergência na quantidade de dias úteis é erro; cobertura insuficiente de
    fim de semana é apenas aviso.

    Args:
        start: Data de início
        end: Data de término
        length_weeks: Duração em semanas

    Returns:
        SprintValidationResult: Erros e avisos encontrados
    """
    errors = []
    config_warnings = []

    if start > end:
        errors.append("A data de início deve ser anterior ou igual à data de término")

    if not MIN_SPRINT_WEEKS <= length_weeks <= MAX_SPRINT_WEEKS:
        errors.append(
            f"A duração da sprint deve estar entre {MIN_SPRINT_WEEKS} e {MAX_SPRINT_WEEKS} semanas"
        )

    days = get_working_days(start, end)
    actual_working_days = sum(1 for d in days if d.is_working_day)
    expected_working_days = length_weeks * WORKING_DAYS_PER_WEEK
    if actual_working_days != expected_working_days:
        errors.append(
            f"Esperados {expected_working_days} dias úteis para {length_weeks} semanas, "
            f"encontrados {actual_working_days}"
        )

    weekend_days = sum(1 for d in days if d.is_weekend)
    expected_weekend_days = length_weeks * len(WEEKEND_DAYS)
    # Tolera semanas parciais
    if weekend_days < expected_weekend_days - 1:
        config_warnings.append(
            f"A sprint inclui apenas {weekend_days} dias de fim de semana "
            f"(esperados ao menos {expected_weekend_days - 1})"
        )

    return SprintValidationResult(
        is_valid=not errors, errors=errors, warnings=config_warnings
    )


def ensure_valid_sprint_config(start: date, end: date, length_weeks: int) -> SprintValidationResult:
    """Valida a configuração e levanta ValidationError se houver erros"""
    result = validate_sprint_config(start, end, length_weeks)
    for message in result.warnings:
        logger.warning(f"Configuração da sprint: {message}")
        warnings.warn(message, ConfigWarning, stacklevel=2)
    if not result.is_valid:
        raise ValidationError(
            f"Configuração de sprint inválida: {'; '.join(result.errors)}",
            result.errors,
        )
    return result


def build_sprint_window(payload: Dict[str, Any]) -> SprintWindow:
    """
    Constrói a janela da sprint a partir do payload do serviço remoto

    Args:
        payload: Dicionário com start/end/length_weeks/sprint_number (aceita
            também as chaves sprint_start_date, sprint_end_date e sprint_length_weeks)

    Returns:
        SprintWindow: Janela validada
    """
    start = _parse_date(payload.get("start", payload.get("sprint_start_date")))
    end = _parse_date(payload.get("end", payload.get("sprint_end_date")))
    length_weeks = payload.get("length_weeks", payload.get("sprint_length_weeks"))
    if start is None or length_weeks is None:
        raise ValidationError("Sprint sem data de início ou duração")
    length_weeks = int(length_weeks)
    if end is None:
        end = calculate_sprint_end_date(start, length_weeks)

    result = validate_sprint_config(start, end, length_weeks)
    for message in result.warnings:
        logger.warning(f"Sprint {payload.get('sprint_number')}: {message}")
    if not result.is_valid:
        raise ValidationError(
            f"Sprint {payload.get('sprint_number')} inválida: {'; '.join(result.errors)}",
            result.errors,
        )

    return SprintWindow(
        start_date=start,
        end_date=end,
        length_weeks=length_weeks,
        sprint_number=int(payload.get("sprint_number") or 1),
        id=payload.get("id"),
    )


def group_days_by_week(days: List[WorkingDay]) -> List[List[WorkingDay]]:
    """Agrupa os dias em semanas iniciadas no domingo"""
    weeks: List[List[WorkingDay]] = []
    current_week: List[WorkingDay] = []
    for day in days:
        if day.day_of_week == 0 and current_week:
            weeks.append(current_week)
            current_week = []
        current_week.append(day)
    if current_week:
        weeks.append(current_week)
    return weeks


def week_bounds(reference: date):
    """Retorna (domingo, sábado) da semana que contém a data"""
    start = reference - timedelta(days=day_of_week(reference))
    return start, start + timedelta(days=6)


def working_days_remaining(end: date, today: date) -> int:
    """Dias úteis restantes após hoje até o fim da sprint"""
    if today >= end:
        return 0
    return count_working_days(today + timedelta(days=1), end)


def sprint_progress(window: SprintWindow, today: date) -> SprintProgress:
    """Calcula o progresso temporal da sprint em relação a hoje"""
    total_days = (window.end_date - window.start_date).days + 1
    days_elapsed = max(0, (today - window.start_date).days)
    days_remaining = max(0, (window.end_date - today).days)
    time_progress = min(100.0, max(0.0, days_elapsed / total_days * 100)) if total_days > 0 else 0.0
    return SprintProgress(
        time_progress=round(time_progress),
        days_elapsed=days_elapsed,
        days_remaining=days_remaining,
        working_days_remaining=working_days_remaining(
            window.end_date, max(today, window.start_date - timedelta(days=1))
        ),
    )


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError(f"Data inválida: {value}. Formato esperado: YYYY-MM-DD") from e
