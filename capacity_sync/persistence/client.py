import asyncio
import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from loguru import logger
from pydantic import BaseModel, field_validator

from ..models.entities import ScheduleKey, Team, TeamMember, WorkValue


class RemoteEntry(BaseModel):
    """Marcação como retornada pelo serviço de persistência"""

    value: WorkValue
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("value", mode="before")
    @classmethod
    def parse_value(cls, v):
        if isinstance(v, str) and not isinstance(v, WorkValue):
            return WorkValue(v)
        return v


RemoteScheduleData = Dict[int, Dict[date, RemoteEntry]]


class IncrementalResult(BaseModel):
    """Resposta da consulta incremental"""

    data: RemoteScheduleData
    sync_timestamp: datetime
    changes_count: int


class PersistenceService(Protocol):
    """Contrato do serviço de persistência remoto"""

    async def get_schedule_entries(
        self, start: date, end: date, team_id: Optional[int] = None
    ) -> RemoteScheduleData: ...

    async def get_schedule_entries_incremental(
        self,
        start: date,
        end: date,
        team_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> IncrementalResult: ...

    async def update_schedule_entry(
        self, member_id: int, entry_date: date, value: WorkValue, reason: Optional[str] = None
    ) -> bool: ...

    async def get_team_members(self, team_id: Optional[int] = None) -> List[TeamMember]: ...

    async def get_teams(self) -> List[Team]: ...

    async def get_current_sprint_window(self) -> Optional[Dict[str, Any]]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Timestamps sem fuso são tratados como UTC"""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class InMemoryPersistence:
    """Serviço de persistência mantido em memória"""

    def __init__(
        self,
        teams: Optional[List[Team]] = None,
        members: Optional[List[TeamMember]] = None,
        sprint: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = _utcnow,
        latency: float = 0.0,
    ):
        """
        Inicializa o serviço

        Args:
            teams: Times cadastrados
            members: Membros cadastrados
            sprint: Payload da sprint atual
            clock: Relógio do servidor, usado nos timestamps de sincronização
            latency: Atraso simulado de cada chamada em segundos
        """
        self.teams: Dict[int, Team] = {t.id: t for t in teams or []}
        self.members: Dict[int, TeamMember] = {m.id: m for m in members or []}
        self.sprint = sprint
        self.clock = clock
        self.latency = latency
        self.entries: Dict[ScheduleKey, RemoteEntry] = {}
        self.writes: List[Tuple[int, date, WorkValue, Optional[str]]] = []
        self.fail_writes = False
        self.fail_reads = False

    async def _roundtrip(self) -> None:
        await asyncio.sleep(self.latency)

    def put_entry(
        self,
        member_id: int,
        entry_date: date,
        value: WorkValue,
        reason: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> RemoteEntry:
        """Grava uma marcação diretamente no servidor (edição de outro usuário)"""
        now = updated_at or self.clock()
        previous = self.entries.get((member_id, entry_date))
        entry = RemoteEntry(
            value=value,
            reason=reason,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        self.entries[(member_id, entry_date)] = entry
        return entry

    def _select(
        self,
        start: date,
        end: date,
        team_id: Optional[int],
        since: Optional[datetime] = None,
    ) -> RemoteScheduleData:
        data: RemoteScheduleData = {}
        since = as_utc(since) if since is not None else None
        for (member_id, entry_date), entry in self.entries.items():
            if not start <= entry_date <= end:
                continue
            if team_id is not None:
                member = self.members.get(member_id)
                if member is None or member.team_id != team_id:
                    continue
            if since is not None and entry.updated_at is not None and as_utc(entry.updated_at) <= since:
                continue
            data.setdefault(member_id, {})[entry_date] = entry
        return data

    async def get_schedule_entries(
        self, start: date, end: date, team_id: Optional[int] = None
    ) -> RemoteScheduleData:
        await self._roundtrip()
        if self.fail_reads:
            raise ConnectionError("Serviço de persistência indisponível")
        return self._select(start, end, team_id)

    async def get_schedule_entries_incremental(
        self,
        start: date,
        end: date,
        team_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> IncrementalResult:
        await self._roundtrip()
        if self.fail_reads:
            raise ConnectionError("Serviço de persistência indisponível")
        sync_timestamp = self.clock()
        data = self._select(start, end, team_id, since)
        changes = sum(len(dates) for dates in data.values())
        return IncrementalResult(data=data, sync_timestamp=sync_timestamp, changes_count=changes)

    async def update_schedule_entry(
        self, member_id: int, entry_date: date, value: WorkValue, reason: Optional[str] = None
    ) -> bool:
        await self._roundtrip()
        if self.fail_writes:
            raise ConnectionError("Tempo esgotado ao gravar marcação")
        self.writes.append((member_id, entry_date, WorkValue(value), reason))
        self.put_entry(member_id, entry_date, WorkValue(value), reason)
        return True

    async def get_team_members(self, team_id: Optional[int] = None) -> List[TeamMember]:
        await self._roundtrip()
        members = sorted(self.members.values(), key=lambda m: m.id)
        if team_id is None:
            return members
        return [m for m in members if m.team_id == team_id]

    async def get_teams(self) -> List[Team]:
        await self._roundtrip()
        return sorted(self.teams.values(), key=lambda t: t.id)

    async def get_current_sprint_window(self) -> Optional[Dict[str, Any]]:
        await self._roundtrip()
        return dict(self.sprint) if self.sprint else None

    def load_snapshot(self, data: Dict[str, Any]) -> None:
        """Carrega times, membros, sprint e marcações de um dicionário"""
        self.teams = {t.id: t for t in (Team(**item) for item in data.get("teams", []))}
        self.members = {m.id: m for m in (TeamMember(**item) for item in data.get("members", []))}
        self.sprint = data.get("sprint")
        self.entries = {}
        for item in data.get("entries", []):
            entry = RemoteEntry(
                value=item["value"],
                reason=item.get("reason"),
                created_at=item.get("created_at"),
                updated_at=item.get("updated_at"),
            )
            self.entries[(int(item["member_id"]), date.fromisoformat(item["date"]))] = entry

    def dump_snapshot(self) -> Dict[str, Any]:
        """Exporta o conteúdo do serviço para um dicionário serializável"""
        return {
            "teams": [t.model_dump(mode="json") for t in self.teams.values()],
            "members": [m.model_dump(mode="json") for m in self.members.values()],
            "sprint": self.sprint,
            "entries": [
                {
                    "member_id": member_id,
                    "date": entry_date.isoformat(),
                    **entry.model_dump(mode="json"),
                }
                for (member_id, entry_date), entry in sorted(self.entries.items())
            ],
        }


class JsonFilePersistence(InMemoryPersistence):
    """Serviço de persistência gravado em um arquivo JSON"""

    def __init__(self, path: Path, clock: Callable[[], datetime] = _utcnow):
        super().__init__(clock=clock)
        self.path = Path(path)
        if self.path.exists():
            self.load_snapshot(json.loads(self.path.read_text(encoding="utf-8")))
            logger.info(
                f"Dados carregados de {self.path}: {len(self.teams)} times, "
                f"{len(self.members)} membros, {len(self.entries)} marcações"
            )
        else:
            logger.warning(f"Arquivo de dados {self.path} não encontrado, iniciando vazio")

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(self.dump_snapshot(), indent=2, ensure_ascii=False), encoding="utf-8"
        )

    async def update_schedule_entry(
        self, member_id: int, entry_date: date, value: WorkValue, reason: Optional[str] = None
    ) -> bool:
        ok = await super().update_schedule_entry(member_id, entry_date, value, reason)
        self.save()
        return ok
