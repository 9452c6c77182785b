import asyncio
import time
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Union
from loguru import logger

from ..models.entities import (
    EntryState,
    OptimisticEntry,
    ScheduleEntry,
    ScheduleKey,
    ScheduleState,
    SprintWindow,
    Team,
    TeamMember,
    WorkValue,
)
from ..models.errors import TransientWriteError, ValidationError
from ..persistence.client import PersistenceService
from .cache import COMPANY_TAG, SPRINT_TAG, CacheLayer, team_tag
from .capacity import validate_work_option
from .debounce import DebounceTracker


def _as_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Data inválida: {value}. Formato esperado: YYYY-MM-DD") from e


class OptimisticUpdateStore:
    """
    Mantém as marcações autoritativas e otimistas da escala

    Cada edição é aplicada localmente na hora e enviada ao serviço remoto após a
    janela de debounce. Edições na mesma chave dentro da janela são agrupadas e
    apenas o último valor é enviado. Falhas de gravação ficam registradas na
    marcação otimista (failed=True) e nunca são propagadas.
    """

    def __init__(
        self,
        persistence: PersistenceService,
        state: Optional[ScheduleState] = None,
        cache: Optional[CacheLayer] = None,
        debounce_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Inicializa o store

        Args:
            persistence: Serviço de persistência remoto
            state: Estado da escala (criado vazio se omitido)
            cache: Cache de agregados a invalidar após cada gravação
            debounce_seconds: Janela de agrupamento de edições
            clock: Relógio monotônico usado para o debounce
        """
        self.persistence = persistence
        self.state = state if state is not None else ScheduleState()
        self.cache = cache
        self.clock = clock
        self._debounce = DebounceTracker(debounce_seconds)
        self._timers: Dict[ScheduleKey, asyncio.TimerHandle] = {}
        self._commits: Set[asyncio.Future] = set()
        self._revision = 0

    @property
    def debounce_seconds(self) -> float:
        return self._debounce.debounce_seconds

    # ------------------------------------------------------------------
    # Leitura
    # ------------------------------------------------------------------

    def get_effective_entry(self, member_id: int, entry_date: Union[date, str]) -> Optional[ScheduleEntry]:
        return self.state.effective_entry((member_id, _as_date(entry_date)))

    def get_cell_value(self, member_id: int, entry_date: Union[date, str]) -> Optional[WorkValue]:
        """Valor exibido na célula (otimista, autoritativo ou vazio)"""
        entry = self.get_effective_entry(member_id, entry_date)
        return entry.value if entry else None

    def entry_state(self, member_id: int, entry_date: Union[date, str]) -> EntryState:
        key = (member_id, _as_date(entry_date))
        optimistic = self.state.optimistic.get(key)
        if optimistic is not None:
            return optimistic.state
        if key in self.state.authoritative:
            return EntryState.COMMITTED
        return EntryState.EMPTY

    def get_schedule_data(self) -> Dict[int, Dict[date, ScheduleEntry]]:
        """Cópia das marcações efetivas indexadas por membro e data"""
        data: Dict[int, Dict[date, ScheduleEntry]] = {}
        for (member_id, entry_date), entry in self.state.effective_entries().items():
            data.setdefault(member_id, {})[entry_date] = entry
        return data

    def is_shadowed(self, key: ScheduleKey) -> bool:
        """Chave com edição local pendente ou com falha"""
        return key in self.state.optimistic

    def pending_keys(self) -> List[ScheduleKey]:
        return [k for k, e in self.state.optimistic.items() if not e.failed]

    def failed_entries(self) -> List[OptimisticEntry]:
        return [e for e in self.state.optimistic.values() if e.failed]

    # ------------------------------------------------------------------
    # Edição otimista
    # ------------------------------------------------------------------

    def update_schedule_optimistic(
        self,
        member_id: int,
        entry_date: Union[date, str],
        value: Union[WorkValue, str],
        reason: Optional[str] = None,
    ) -> OptimisticEntry:
        """
        Aplica uma marcação localmente e agenda a gravação com debounce

        Args:
            member_id: Id do membro
            entry_date: Data da marcação
            value: Marcação (validada contra o papel do membro)
            reason: Motivo opcional

        Returns:
            OptimisticEntry: Marcação otimista registrada
        """
        member = self.state.members.get(member_id)
        if member is None:
            raise ValidationError(f"Membro {member_id} desconhecido")
        parsed = validate_work_option(value, member.role)
        key = (member_id, _as_date(entry_date))

        now = self.clock()
        self._revision += 1
        entry = OptimisticEntry(
            member_id=member_id,
            date=key[1],
            value=parsed,
            reason=reason,
            pending=True,
            failed=False,
            edited_at=now,
            revision=self._revision,
        )
        if key in self._debounce:
            logger.debug(f"Edição agrupada para {member_id} em {key[1]}: {parsed.value}")
        self.state.optimistic[key] = entry
        self._debounce.touch(key, now)
        self._invalidate_for_member(member_id)
        self._arm_timer(key)
        return entry

    def _arm_timer(self, key: ScheduleKey) -> None:
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sem event loop: a gravação acontece via flush_due/flush_all
            return
        delay = self._debounce.remaining(key, self.clock())
        self._timers[key] = loop.call_later(
            self.debounce_seconds if delay is None else delay, self._on_timer, key
        )

    def _on_timer(self, key: ScheduleKey) -> None:
        self._timers.pop(key, None)
        self._spawn_commit(key)

    def _spawn_commit(self, key: ScheduleKey) -> None:
        task = asyncio.ensure_future(self._commit(key))
        self._commits.add(task)
        task.add_done_callback(self._commits.discard)

    def _cancel_timer(self, key: ScheduleKey) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Gravação
    # ------------------------------------------------------------------

    async def flush_due(self, now: Optional[float] = None) -> int:
        """
        Grava as chaves cuja janela de debounce terminou

        Args:
            now: Instante de referência (usa o relógio do store se omitido)

        Returns:
            int: Quantidade de chaves enviadas
        """
        now = self.clock() if now is None else now
        keys = self._debounce.due(now)
        for key in keys:
            self._cancel_timer(key)
        await asyncio.gather(*(self._commit(key) for key in keys))
        return len(keys)

    async def flush_all(self) -> int:
        """Grava imediatamente todas as edições pendentes"""
        keys = self._debounce.keys()
        for key in keys:
            self._cancel_timer(key)
        await asyncio.gather(*(self._commit(key) for key in keys))
        await self.wait_idle()
        return len(keys)

    async def wait_idle(self) -> None:
        """Aguarda as gravações disparadas pelos timers"""
        while self._commits:
            await asyncio.gather(*list(self._commits))

    async def retry_failed(
        self,
        member_id: Optional[int] = None,
        entry_date: Optional[Union[date, str]] = None,
    ) -> int:
        """
        Reenvia marcações com falha (nunca é automático)

        Args:
            member_id: Restringe a um membro
            entry_date: Restringe a uma data

        Returns:
            int: Quantidade de marcações reenviadas
        """
        target_date = _as_date(entry_date) if entry_date is not None else None
        keys = [
            key
            for key, entry in self.state.optimistic.items()
            if entry.failed
            and (member_id is None or key[0] == member_id)
            and (target_date is None or key[1] == target_date)
        ]
        for key in keys:
            self._revision += 1
            self.state.optimistic[key] = self.state.optimistic[key].model_copy(
                update={
                    "pending": True,
                    "failed": False,
                    "error": None,
                    "edited_at": self.clock(),
                    "revision": self._revision,
                }
            )
        if keys:
            logger.info(f"Reenviando {len(keys)} marcações com falha")
        await asyncio.gather(*(self._commit(key) for key in keys))
        return len(keys)

    async def _commit(self, key: ScheduleKey) -> bool:
        self._debounce.discard(key)
        entry = self.state.optimistic.get(key)
        if entry is None or entry.failed:
            return False

        member_id, entry_date = key
        revision = entry.revision
        try:
            ok = await self.persistence.update_schedule_entry(
                member_id, entry_date, entry.value, entry.reason
            )
            if ok is False:
                raise TransientWriteError(member_id, entry_date, "gravação recusada pelo serviço")
        except Exception as e:
            error = e if isinstance(e, TransientWriteError) else TransientWriteError(member_id, entry_date, str(e))
            logger.error(str(error))
            current = self.state.optimistic.get(key)
            if current is not None and current.revision == revision:
                self.state.optimistic[key] = current.model_copy(
                    update={"pending": False, "failed": True, "error": error.reason}
                )
            self._invalidate_for_member(member_id)
            return False

        current = self.state.optimistic.get(key)
        if current is not None and current.revision == revision:
            del self.state.optimistic[key]
            logger.info(f"Marcação do membro {member_id} em {entry_date} gravada: {entry.value.value}")
        else:
            logger.debug(f"Marcação do membro {member_id} em {entry_date} foi substituída durante a gravação")
        self._invalidate_for_member(member_id)
        return True

    # ------------------------------------------------------------------
    # Camada autoritativa e dados de referência
    # ------------------------------------------------------------------

    def set_reference_data(
        self,
        teams: Iterable[Team],
        members: Iterable[TeamMember],
        sprint: Optional[SprintWindow],
    ) -> None:
        """Substitui times, membros e sprint atual"""
        self.state.teams = {t.id: t for t in teams}
        self.state.members = {m.id: m for m in members}
        if sprint != self.state.current_sprint and self.cache is not None:
            self.cache.invalidate(SPRINT_TAG)
        self.state.current_sprint = sprint

    def apply_authoritative(self, entries: Iterable[ScheduleEntry]) -> int:
        """
        Aplica marcações confirmadas pelo servidor

        Chaves com edição local pendente ou com falha também são gravadas na
        camada autoritativa, mas continuam exibindo o valor otimista até a
        edição ser resolvida.

        Returns:
            int: Quantidade de marcações aplicadas
        """
        applied = 0
        touched_members = set()
        for entry in entries:
            self.state.authoritative[entry.key] = entry
            touched_members.add(entry.member_id)
            applied += 1
        for member_id in touched_members:
            self._invalidate_for_member(member_id)
        return applied

    def replace_authoritative(self, entries: Iterable[ScheduleEntry]) -> int:
        """Substitui toda a camada autoritativa (carga completa)"""
        self.state.authoritative = {entry.key: entry for entry in entries}
        if self.cache is not None:
            self.cache.clear()
        return len(self.state.authoritative)

    def mark_synced(self, sync_timestamp: datetime) -> None:
        """Avança o último sync para o timestamp informado pelo servidor"""
        self.state.last_sync_timestamp = sync_timestamp

    async def load_schedule_data(
        self, start: date, end: date, team_id: Optional[int] = None
    ) -> bool:
        """
        Carrega a camada autoritativa completa do período

        Returns:
            bool: False se a carga falhou (o estado anterior é mantido)
        """
        self.state.is_loading = True
        try:
            result = await self.persistence.get_schedule_entries_incremental(
                start, end, team_id, None
            )
        except Exception as e:
            logger.error(f"Erro ao carregar escala de {start} a {end}: {str(e)}")
            return False
        finally:
            self.state.is_loading = False

        entries = [
            ScheduleEntry(
                member_id=member_id,
                date=entry_date,
                value=remote.value,
                reason=remote.reason,
                created_at=remote.created_at,
                updated_at=remote.updated_at,
            )
            for member_id, dates in result.data.items()
            for entry_date, remote in dates.items()
        ]
        count = self.replace_authoritative(entries)
        self.mark_synced(result.sync_timestamp)
        logger.info(f"Escala carregada: {count} marcações de {start} a {end}")
        return True

    def clear_optimistic_updates(self) -> None:
        """Descarta todas as edições locais não confirmadas"""
        for key in list(self._timers):
            self._cancel_timer(key)
        for key in self._debounce.keys():
            self._debounce.discard(key)
        member_ids = {key[0] for key in self.state.optimistic}
        self.state.optimistic.clear()
        for member_id in member_ids:
            self._invalidate_for_member(member_id)

    def reset(self) -> None:
        self.clear_optimistic_updates()
        self.state.authoritative.clear()
        self.state.last_sync_timestamp = None
        if self.cache is not None:
            self.cache.clear()

    def _invalidate_for_member(self, member_id: int) -> None:
        if self.cache is None:
            return
        tags = [COMPANY_TAG]
        member = self.state.members.get(member_id)
        if member is not None and member.team_id is not None:
            tags.append(team_tag(member.team_id))
        self.cache.invalidate_tags(tags)
