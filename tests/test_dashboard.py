import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from capacity_sync.models.config import SessionState, SyncSettings
from capacity_sync.models.entities import SprintHealthStatus, Team, TeamMember, WorkValue
from capacity_sync.models.errors import ValidationError
from capacity_sync.persistence.client import InMemoryPersistence
from capacity_sync.persistence.session import SessionRepository
from capacity_sync.services.cache import SPRINT_TAG
from capacity_sync.services.dashboard import ScheduleDashboard


class ServerClock:
    """Relógio do servidor controlado pelos testes"""

    def __init__(self):
        self.now = datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def server_clock():
    return ServerClock()


@pytest.fixture
def persistence(server_clock):
    """Fixture para serviço com dois times e uma sprint de 2 semanas"""
    persistence = InMemoryPersistence(
        teams=[Team(id=1, name="Plataforma"), Team(id=2, name="Produto")],
        members=[
            TeamMember(id=10, name="Ana Souza", team_id=1, isManager=True),
            TeamMember(id=11, name="Bruno Lima", team_id=1),
            TeamMember(id=20, name="Carla Dias", team_id=2),
        ],
        sprint={"id": 7, "sprint_number": 7, "start": "2024-01-14", "length_weeks": 2},
        clock=server_clock,
    )
    for offset in range(5):
        persistence.put_entry(11, date(2024, 1, 14) + timedelta(days=offset), WorkValue.FULL_DAY)
    persistence.put_entry(10, date(2024, 1, 14), WorkValue.HALF_DAY)
    persistence.put_entry(20, date(2024, 1, 21), WorkValue.FULL_DAY)
    return persistence


@pytest.fixture
def dashboard(persistence):
    dashboard = ScheduleDashboard(persistence, SyncSettings())
    assert asyncio.run(dashboard.load())
    return dashboard


def test_load(dashboard, server_clock):
    """Testa a carga de times, membros, sprint e escala"""
    sprint = dashboard.get_current_sprint_window()

    assert sprint.sprint_number == 7
    assert sprint.end_date == date(2024, 1, 25)
    assert set(dashboard.state.teams) == {1, 2}
    assert dashboard.state.members[10].is_manager
    assert len(dashboard.get_schedule_data()[11]) == 5
    assert dashboard.state.last_sync_timestamp == server_clock.now


def test_load_with_invalid_sprint(persistence):
    """Testa sprint com configuração inválida"""
    persistence.sprint = {"start": "2024-01-14", "end": "2024-01-20", "length_weeks": 2}
    dashboard = ScheduleDashboard(persistence)

    assert not asyncio.run(dashboard.load())
    assert dashboard.get_current_sprint_window() is None
    assert dashboard.get_team_utilization(1) == 0


def test_load_without_sprint(persistence):
    persistence.sprint = None
    dashboard = ScheduleDashboard(persistence)

    assert not asyncio.run(dashboard.load())
    with pytest.raises(ValidationError):
        dashboard.get_team_summary(1)


def test_get_cell_value(dashboard):
    assert dashboard.get_cell_value(11, "2024-01-14") is WorkValue.FULL_DAY
    assert dashboard.get_cell_value(11, "2024-01-21") is None


def test_team_summary_cache_hit_and_miss(dashboard):
    """Testa o acerto no cache e a invalidação após edição"""
    summary, hit = dashboard.fetch_team_summary(1)
    assert not hit
    assert summary.actual_hours == 38.5
    assert summary.max_capacity_hours == 105.0

    _, hit = dashboard.fetch_team_summary(1)
    assert hit

    dashboard.fetch_team_summary(2)
    dashboard.update_schedule_optimistic(11, date(2024, 1, 21), "1")

    summary, hit = dashboard.fetch_team_summary(1)
    assert not hit
    assert summary.actual_hours == 45.5
    _, hit = dashboard.fetch_team_summary(2)
    assert hit


def test_team_summary_unknown_team(dashboard):
    with pytest.raises(ValidationError):
        dashboard.fetch_team_summary(99)


def test_get_team_utilization(dashboard):
    """Testa o percentual de utilização por time"""
    assert dashboard.get_team_utilization(1) == 37
    assert dashboard.get_team_utilization(2) == 10
    assert dashboard.get_team_utilization(99) == 0


def test_get_member_summaries(dashboard):
    summaries = dashboard.get_member_summaries(1)

    assert [s.member_id for s in summaries] == [10, 11]
    assert summaries[0].max_possible_hours == 35.0
    assert summaries[1].completion_percentage == 50


def test_get_company_summary(dashboard):
    """Testa o agregado da empresa e a invalidação pela tag da sprint"""
    summary, hit = dashboard.fetch_company_summary()

    assert not hit
    assert summary.total_teams == 2
    assert summary.total_members == 3
    assert summary.actual_hours == 45.5

    assert dashboard.fetch_company_summary()[1]
    assert dashboard.invalidate_cache(SPRINT_TAG) >= 1
    assert not dashboard.fetch_company_summary()[1]


def test_get_weekly_hours(dashboard):
    """Testa as horas da semana de domingo a sábado"""
    assert dashboard.get_weekly_hours(11, reference=date(2024, 1, 17)) == 35.0
    assert dashboard.get_weekly_hours(reference=date(2024, 1, 17)) == 38.5
    assert dashboard.get_weekly_hours(reference=date(2024, 1, 23)) == 7.0


def test_get_sprint_weekly_hours(dashboard):
    """Testa as horas de cada semana da sprint"""
    assert dashboard.get_sprint_weekly_hours() == [38.5, 7.0]
    assert dashboard.get_sprint_weekly_hours(1) == [38.5, 0]
    assert dashboard.get_sprint_weekly_hours(2) == [0, 7.0]


def test_auto_sync_uses_configured_interval(persistence, server_clock):
    """Testa a sincronização automática criada pelo painel"""
    dashboard = ScheduleDashboard(persistence, SyncSettings(sync_interval_seconds=60))
    assert asyncio.run(dashboard.load())
    server_clock.advance(1)
    persistence.put_entry(20, date(2024, 1, 22), WorkValue.HALF_DAY)
    server_clock.advance(1)

    async def scenario():
        dashboard.start_auto_sync()
        assert dashboard.auto_sync.running
        assert dashboard.set_visible(False) is None
        result = await dashboard.set_visible(True)
        await dashboard.stop_auto_sync()
        return result

    result = asyncio.run(scenario())

    assert dashboard.auto_sync.interval_seconds == 60
    assert result.applied == 1
    assert not dashboard.auto_sync.running
    assert dashboard.get_cell_value(20, date(2024, 1, 22)) is WorkValue.HALF_DAY
    assert dashboard.state.last_sync_timestamp == server_clock.now


def test_on_focus_runs_sync_cycle(dashboard, persistence, server_clock):
    server_clock.advance(1)
    persistence.put_entry(11, date(2024, 1, 21), WorkValue.ABSENT)
    server_clock.advance(1)

    async def scenario():
        return await dashboard.on_focus()

    result = asyncio.run(scenario())

    assert result.ok
    assert dashboard.get_cell_value(11, date(2024, 1, 21)) is WorkValue.ABSENT


def test_weekly_hours_include_optimistic_edits(dashboard):
    dashboard.update_schedule_optimistic(11, date(2024, 1, 22), "0.5")

    assert dashboard.get_weekly_hours(11, reference=date(2024, 1, 22)) == 3.5


def test_get_sprint_overview(dashboard):
    overview = dashboard.get_sprint_overview(today=date(2024, 1, 24))

    assert overview.total_days == 12
    assert overview.working_days == 10
    assert overview.progress.working_days_remaining == 1
    assert overview.completion_percentage == 23
    assert overview.health is SprintHealthStatus.CRITICAL


def test_sync_schedule_with_server(dashboard, persistence, server_clock):
    """Testa o envio das edições pendentes seguido da sincronização"""
    dashboard.update_schedule_optimistic(11, date(2024, 1, 21), "0.5")
    server_clock.advance(10)
    persistence.put_entry(20, date(2024, 1, 22), WorkValue.ABSENT)
    server_clock.advance(1)

    result = asyncio.run(dashboard.sync_schedule_with_server())

    assert result.ok
    assert persistence.writes == [(11, date(2024, 1, 21), WorkValue.HALF_DAY, None)]
    assert dashboard.get_cell_value(11, date(2024, 1, 21)) is WorkValue.HALF_DAY
    assert dashboard.get_cell_value(20, date(2024, 1, 22)) is WorkValue.ABSENT
    assert dashboard.state.optimistic == {}
    assert dashboard.state.last_sync_timestamp == server_clock.now


def test_failed_write_is_visible(dashboard, persistence):
    persistence.fail_writes = True
    dashboard.update_schedule_optimistic(11, date(2024, 1, 21), "1")

    asyncio.run(dashboard.sync_schedule_with_server())

    failed = dashboard.get_failed_entries()
    assert len(failed) == 1
    assert dashboard.get_cell_value(11, date(2024, 1, 21)) is WorkValue.FULL_DAY

    persistence.fail_writes = False
    assert asyncio.run(dashboard.retry_failed()) == 1
    assert dashboard.get_failed_entries() == []


def test_session_is_persisted(persistence, tmp_path):
    """Testa que time selecionado, aba ativa e último sync sobrevivem entre sessões"""
    repository = SessionRepository(tmp_path / "session.json")
    dashboard = ScheduleDashboard(persistence, session_repository=repository)
    asyncio.run(dashboard.load())
    dashboard.select_team(2)
    dashboard.set_active_tab("capacity")

    saved = repository.load()
    assert saved == SessionState(
        selected_team_id=2,
        active_tab_id="capacity",
        last_sync_timestamp=dashboard.state.last_sync_timestamp,
    )

    restored = ScheduleDashboard(persistence, session_repository=repository)
    assert restored.state.selected_team_id == 2
    assert restored.state.active_tab_id == "capacity"
    assert restored.state.last_sync_timestamp == saved.last_sync_timestamp
