import asyncio
import contextlib
from datetime import datetime
from typing import Awaitable, Callable, Optional, Set
from loguru import logger
from pydantic import BaseModel

from ..models.entities import ScheduleEntry
from ..models.errors import SyncError
from ..persistence.client import IncrementalResult, PersistenceService, RemoteEntry, as_utc
from .store import OptimisticUpdateStore


class SyncResult(BaseModel):
    """Resultado de um ciclo de sincronização incremental"""
    ok: bool = True
    applied: int = 0
    skipped_shadowed: int = 0
    skipped_stale: int = 0
    changes_count: int = 0
    sync_timestamp: Optional[datetime] = None
    skipped_in_flight: bool = False
    error: Optional[str] = None


def remote_wins(current: Optional[ScheduleEntry], remote: RemoteEntry) -> bool:
    """Última escrita vence, usando o timestamp de cada marcação"""
    if current is None or current.updated_at is None or remote.updated_at is None:
        return True
    return as_utc(remote.updated_at) >= as_utc(current.updated_at)


class IncrementalSyncReconciler:
    """Busca as alterações remotas desde o último sync e as mescla na camada autoritativa"""

    def __init__(
        self,
        store: OptimisticUpdateStore,
        persistence: PersistenceService,
        on_synced: Optional[Callable[[datetime], None]] = None,
    ):
        """
        Inicializa o reconciliador

        Args:
            store: Store dono das camadas autoritativa e otimista
            persistence: Serviço de persistência remoto
            on_synced: Chamado com o timestamp do servidor após cada ciclo bem sucedido
        """
        self.store = store
        self.persistence = persistence
        self.on_synced = on_synced
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def last_sync_timestamp(self) -> Optional[datetime]:
        return self.store.state.last_sync_timestamp

    async def load_schedule_incremental(self, team_id: Optional[int] = None) -> SyncResult:
        """
        Executa um ciclo de sincronização incremental

        Falhas são registradas no log e retornadas no resultado; o próximo ciclo
        tenta novamente.

        Args:
            team_id: Restringe a consulta a um time

        Returns:
            SyncResult: Contadores do ciclo
        """
        if self._in_flight:
            logger.debug("Sincronização já em andamento, ciclo ignorado")
            return SyncResult(skipped_in_flight=True)

        sprint = self.store.state.current_sprint
        if sprint is None:
            logger.warning("Nenhuma sprint ativa, sincronização incremental ignorada")
            return SyncResult(ok=False, error="Nenhuma sprint ativa")

        self._in_flight = True
        try:
            try:
                response = await self.persistence.get_schedule_entries_incremental(
                    sprint.start_date,
                    sprint.end_date,
                    team_id,
                    self.last_sync_timestamp,
                )
            except Exception as e:
                error = SyncError(f"Falha na sincronização incremental: {str(e)}")
                logger.error(str(error))
                return SyncResult(ok=False, error=str(error))
            result = self.merge(response)
        finally:
            self._in_flight = False

        if self.on_synced is not None:
            self.on_synced(result.sync_timestamp)
        return result

    def merge(self, response: IncrementalResult) -> SyncResult:
        """
        Mescla a resposta incremental na camada autoritativa

        Segue última escrita vence. Chaves com edição local não resolvida
        recebem o valor remoto por baixo da edição, que continua sendo exibida.
        """
        state = self.store.state
        to_apply = []
        shadowed = 0
        stale = 0
        for member_id, dates in response.data.items():
            for entry_date, remote in dates.items():
                key = (member_id, entry_date)
                if not remote_wins(state.authoritative.get(key), remote):
                    stale += 1
                    continue
                if self.store.is_shadowed(key):
                    shadowed += 1
                to_apply.append(
                    ScheduleEntry(
                        member_id=member_id,
                        date=entry_date,
                        value=remote.value,
                        reason=remote.reason,
                        created_at=remote.created_at,
                        updated_at=remote.updated_at,
                    )
                )

        applied = self.store.apply_authoritative(to_apply) - shadowed
        self.store.mark_synced(response.sync_timestamp)

        if response.changes_count:
            logger.info(
                f"Sincronizadas {response.changes_count} alterações: {applied} aplicadas, "
                f"{shadowed} mantidas por edição local, {stale} desatualizadas"
            )
        return SyncResult(
            applied=applied,
            skipped_shadowed=shadowed,
            skipped_stale=stale,
            changes_count=response.changes_count,
            sync_timestamp=response.sync_timestamp,
        )


class AutoSyncRunner:
    """Executa a sincronização incremental periodicamente enquanto a tela está visível"""

    def __init__(
        self,
        reconciler: IncrementalSyncReconciler,
        interval_seconds: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.visible = True
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._focus_tasks: Set[asyncio.Future] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Inicia o laço periódico (requer event loop em execução)"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Sincronização automática iniciada a cada {self.interval_seconds:.0f}s")

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            if self.visible:
                await self.reconciler.load_schedule_incremental()

    def set_visible(self, visible: bool) -> Optional[asyncio.Future]:
        """
        Atualiza a visibilidade da tela

        Ao voltar a ficar visível dispara um ciclo imediato.
        """
        became_visible = visible and not self.visible
        self.visible = visible
        if became_visible:
            return self.on_focus()
        return None

    def on_focus(self) -> asyncio.Future:
        """Dispara um ciclo imediato ao recuperar o foco"""
        task = asyncio.ensure_future(self.reconciler.load_schedule_incremental())
        self._focus_tasks.add(task)
        task.add_done_callback(self._focus_tasks.discard)
        return task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._focus_tasks:
            await asyncio.gather(*list(self._focus_tasks))
        logger.info("Sincronização automática encerrada")
