import asyncio
import time
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple, Union
from loguru import logger

from ..models.config import SessionState, SyncSettings
from ..models.entities import (
    CompanyCapacitySummary,
    MemberCapacitySummary,
    OptimisticEntry,
    ScheduleEntry,
    ScheduleState,
    SprintOverview,
    SprintWindow,
    TeamCapacitySummary,
    WorkValue,
)
from ..models.errors import ValidationError
from ..persistence.client import PersistenceService
from ..persistence.session import SessionRepository
from .cache import COMPANY_TAG, SPRINT_TAG, CacheLayer, team_tag
from .calendar import build_sprint_window, get_working_days, group_days_by_week, sprint_progress, week_bounds
from .capacity import (
    compute_company_summary,
    compute_team_summary,
    group_entries_by_member,
    sprint_health_status,
)
from .store import OptimisticUpdateStore
from .sync import AutoSyncRunner, IncrementalSyncReconciler, SyncResult


class ScheduleDashboard:
    """
    Raiz de composição do painel de escala

    Cria o estado, o cache, o store otimista e o reconciliador, e expõe os
    seletores e mutadores usados pela camada de apresentação.
    """

    def __init__(
        self,
        persistence: PersistenceService,
        settings: Optional[SyncSettings] = None,
        session_repository: Optional[SessionRepository] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Inicializa o painel

        Args:
            persistence: Serviço de persistência remoto
            settings: Configuração de debounce, sync e cache
            session_repository: Onde gravar o estado local da sessão
            clock: Relógio monotônico compartilhado por store e cache
        """
        self.settings = settings or SyncSettings()
        self.persistence = persistence
        self.session_repository = session_repository
        self.state = ScheduleState()
        self.cache = CacheLayer(
            default_ttl=self.settings.team_cache_ttl_seconds,
            max_entries=self.settings.max_cache_entries,
            clock=clock,
        )
        self.store = OptimisticUpdateStore(
            persistence,
            self.state,
            self.cache,
            debounce_seconds=self.settings.debounce_seconds,
            clock=clock,
        )
        self.reconciler = IncrementalSyncReconciler(
            self.store, persistence, on_synced=self._on_synced
        )
        self.auto_sync = AutoSyncRunner(self.reconciler, self.settings.sync_interval_seconds)
        self._restore_session()

    def _restore_session(self) -> None:
        if self.session_repository is None:
            return
        session = self.session_repository.load()
        self.state.selected_team_id = session.selected_team_id
        self.state.active_tab_id = session.active_tab_id
        self.state.last_sync_timestamp = session.last_sync_timestamp

    def _on_synced(self, sync_timestamp: datetime) -> None:
        self.save_session()

    # ------------------------------------------------------------------
    # Carga
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """
        Carrega times, membros, sprint atual e a escala completa da sprint

        Returns:
            bool: False se a carga não pôde ser concluída
        """
        try:
            teams = await self.persistence.get_teams()
            members = await self.persistence.get_team_members()
            payload = await self.persistence.get_current_sprint_window()
        except Exception as e:
            logger.error(f"Erro ao carregar dados de referência: {str(e)}")
            return False

        sprint = None
        if payload:
            try:
                sprint = build_sprint_window(payload)
            except ValidationError as e:
                logger.error(str(e))
        else:
            logger.warning("Nenhuma sprint ativa retornada pelo serviço")

        self.store.set_reference_data(teams, members, sprint)
        logger.info(f"Carregados {len(teams)} times e {len(members)} membros")
        if sprint is None:
            return False

        loaded = await self.store.load_schedule_data(sprint.start_date, sprint.end_date)
        if loaded:
            self.save_session()
        return loaded

    # ------------------------------------------------------------------
    # Seletores
    # ------------------------------------------------------------------

    def get_schedule_data(self) -> Dict[int, Dict[date, ScheduleEntry]]:
        return self.store.get_schedule_data()

    def get_cell_value(self, member_id: int, entry_date: Union[date, str]) -> Optional[WorkValue]:
        return self.store.get_cell_value(member_id, entry_date)

    def get_current_sprint_window(self) -> Optional[SprintWindow]:
        return self.state.current_sprint

    def get_failed_entries(self) -> List[OptimisticEntry]:
        return self.store.failed_entries()

    def get_weekly_hours(self, member_id: Optional[int] = None, reference: Optional[date] = None) -> float:
        """
        Horas marcadas na semana (domingo a sábado) que contém a data de referência

        Args:
            member_id: Membro; se omitido soma todos os membros
            reference: Data de referência (hoje se omitida)

        Returns:
            float: Total de horas em dias úteis
        """
        start, end = week_bounds(reference or date.today())
        working = {d.date for d in get_working_days(start, end) if d.is_working_day}
        return sum(
            entry.hours
            for (entry_member, entry_date), entry in self.state.effective_entries().items()
            if entry_date in working and (member_id is None or entry_member == member_id)
        )

    def get_sprint_weekly_hours(self, team_id: Optional[int] = None) -> List[float]:
        """Horas marcadas em dias úteis para cada semana da sprint"""
        sprint = self._require_sprint()
        member_ids = None
        if team_id is not None:
            member_ids = {m.id for m in self.state.members_of_team(team_id)}
        entries = self.state.effective_entries()
        totals = []
        for week in group_days_by_week(get_working_days(sprint.start_date, sprint.end_date)):
            working = {d.date for d in week if d.is_working_day}
            totals.append(sum(
                entry.hours
                for (entry_member, entry_date), entry in entries.items()
                if entry_date in working and (member_ids is None or entry_member in member_ids)
            ))
        return totals

    def fetch_team_summary(self, team_id: int) -> Tuple[TeamCapacitySummary, bool]:
        """
        Resumo de capacidade do time, com indicação de acerto no cache

        Returns:
            Tuple[TeamCapacitySummary, bool]: (resumo, se veio do cache)
        """
        sprint = self._require_sprint()
        team = self.state.teams.get(team_id)
        if team is None:
            raise ValidationError(f"Time {team_id} desconhecido")

        def compute() -> TeamCapacitySummary:
            members = self.state.members_of_team(team_id)
            entries = group_entries_by_member(
                self.state.effective_entries().values(), [m.id for m in members]
            )
            return compute_team_summary(team, members, sprint, entries)

        return self.cache.get_or_compute(
            f"team:{team_id}:sprint:{sprint.sprint_number}",
            compute,
            ttl=self.settings.team_cache_ttl_seconds,
            tags=[team_tag(team_id), SPRINT_TAG],
        )

    def get_team_summary(self, team_id: int) -> TeamCapacitySummary:
        summary, _ = self.fetch_team_summary(team_id)
        return summary

    def get_member_summaries(self, team_id: int) -> List[MemberCapacitySummary]:
        return self.get_team_summary(team_id).member_summaries

    def get_team_utilization(self, team_id: int) -> int:
        """Percentual de utilização do time (0 sem sprint ativa ou time desconhecido)"""
        if self.state.current_sprint is None or team_id not in self.state.teams:
            return 0
        return self.get_team_summary(team_id).utilization_percentage

    def fetch_company_summary(self) -> Tuple[CompanyCapacitySummary, bool]:
        sprint = self._require_sprint()

        def compute() -> CompanyCapacitySummary:
            return compute_company_summary(
                [self.get_team_summary(team_id) for team_id in sorted(self.state.teams)]
            )

        return self.cache.get_or_compute(
            f"company:sprint:{sprint.sprint_number}",
            compute,
            ttl=self.settings.company_cache_ttl_seconds,
            tags=[COMPANY_TAG, SPRINT_TAG],
        )

    def get_company_summary(self) -> CompanyCapacitySummary:
        summary, _ = self.fetch_company_summary()
        return summary

    def get_sprint_overview(self, today: Optional[date] = None) -> SprintOverview:
        """Visão geral da sprint: calendário, progresso e saúde do preenchimento"""
        sprint = self._require_sprint()
        today = today or date.today()

        def compute() -> SprintOverview:
            days = get_working_days(sprint.start_date, sprint.end_date)
            progress = sprint_progress(sprint, today)
            completion = self.get_company_summary().completion_percentage
            return SprintOverview(
                sprint_number=sprint.sprint_number,
                start_date=sprint.start_date,
                end_date=sprint.end_date,
                total_days=len(days),
                working_days=sum(1 for d in days if d.is_working_day),
                progress=progress,
                completion_percentage=completion,
                health=sprint_health_status(completion, progress.working_days_remaining),
            )

        overview, _ = self.cache.get_or_compute(
            f"sprint:{sprint.sprint_number}:{today.isoformat()}",
            compute,
            ttl=self.settings.sprint_cache_ttl_seconds,
            tags=[SPRINT_TAG, COMPANY_TAG],
        )
        return overview

    def _require_sprint(self) -> SprintWindow:
        if self.state.current_sprint is None:
            raise ValidationError("Nenhuma sprint ativa")
        return self.state.current_sprint

    # ------------------------------------------------------------------
    # Mutadores
    # ------------------------------------------------------------------

    def update_schedule_optimistic(
        self,
        member_id: int,
        entry_date: Union[date, str],
        value: Union[WorkValue, str],
        reason: Optional[str] = None,
    ) -> OptimisticEntry:
        return self.store.update_schedule_optimistic(member_id, entry_date, value, reason)

    async def sync_schedule_with_server(self) -> SyncResult:
        """Grava todas as edições pendentes e busca as alterações remotas"""
        flushed = await self.store.flush_all()
        if flushed:
            logger.info(f"{flushed} edições pendentes enviadas antes da sincronização")
        return await self.reconciler.load_schedule_incremental()

    async def load_schedule_incremental(self) -> SyncResult:
        return await self.reconciler.load_schedule_incremental()

    def start_auto_sync(self) -> None:
        """Inicia a sincronização periódica (requer event loop em execução)"""
        self.auto_sync.start()

    async def stop_auto_sync(self) -> None:
        await self.auto_sync.stop()

    def set_visible(self, visible: bool) -> Optional[asyncio.Future]:
        """Pausa ou retoma a sincronização automática conforme a visibilidade da tela"""
        return self.auto_sync.set_visible(visible)

    def on_focus(self) -> asyncio.Future:
        return self.auto_sync.on_focus()

    async def retry_failed(
        self, member_id: Optional[int] = None, entry_date: Optional[Union[date, str]] = None
    ) -> int:
        return await self.store.retry_failed(member_id, entry_date)

    def invalidate_cache(self, tag: str) -> int:
        return self.cache.invalidate(tag)

    def select_team(self, team_id: Optional[int]) -> None:
        self.state.selected_team_id = team_id
        self.save_session()

    def set_active_tab(self, tab_id: str) -> None:
        self.state.active_tab_id = tab_id
        self.save_session()

    def session_state(self) -> SessionState:
        return SessionState(
            selected_team_id=self.state.selected_team_id,
            active_tab_id=self.state.active_tab_id,
            last_sync_timestamp=self.state.last_sync_timestamp,
        )

    def save_session(self) -> None:
        """Grava apenas time selecionado, aba ativa e último sync"""
        if self.session_repository is not None:
            self.session_repository.save(self.session_state())
