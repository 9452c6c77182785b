import asyncio
import json
from datetime import date
from pathlib import Path
from typing import Optional
import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from capacity_sync.models.config import SetupConfig
from capacity_sync.models.entities import EntryState
from capacity_sync.models.errors import CapacitySyncError
from capacity_sync.persistence.client import JsonFilePersistence
from capacity_sync.persistence.session import SessionRepository
from capacity_sync.services.calendar import count_working_days, calculate_sprint_end_date, validate_sprint_config
from capacity_sync.services.dashboard import ScheduleDashboard
from capacity_sync.services.export import ScheduleExporter

app = typer.Typer(help="Capacidade de Sprint - Escala da Equipe")
console = Console()


def configurar_logger(output_dir: Path = Path("logs")):
    """Configura o sistema de logs"""
    output_dir.mkdir(exist_ok=True)

    logger.remove()  # Remove handlers padrão
    logger.add(
        output_dir / "capacidade_{time}.log",
        rotation="1 day",
        retention="7 days",
        level="INFO",
        encoding='utf-8'
    )
    logger.add(lambda msg: console.print(msg, style="blue", end="", markup=False), level="INFO")


def verificar_diretorios():
    """Verifica e cria diretórios necessários"""
    diretorios = ["logs", "output"]
    for dir_name in diretorios:
        Path(dir_name).mkdir(exist_ok=True)


def load_json_file(path: Path) -> dict:
    """
    Carrega um arquivo JSON

    Args:
        path: Caminho do arquivo

    Returns:
        dict: Conteúdo do arquivo
    """
    try:
        return json.loads(path.read_text(encoding='utf-8'))
    except Exception as e:
        logger.error(f"Erro ao carregar arquivo {path}: {str(e)}")
        raise typer.Exit(1)


def carregar_setup(config_dir: Path) -> SetupConfig:
    """Carrega config/setup.json"""
    return SetupConfig(**load_json_file(config_dir / "setup.json"))


def criar_dashboard(setup: SetupConfig) -> ScheduleDashboard:
    """Monta o painel sobre o arquivo de dados configurado"""
    persistence = JsonFilePersistence(Path(setup.data_file))
    return ScheduleDashboard(
        persistence,
        settings=setup.sync,
        session_repository=SessionRepository(Path(setup.session_file)),
    )


def carregar_dashboard(setup: SetupConfig) -> ScheduleDashboard:
    dashboard = criar_dashboard(setup)
    if not asyncio.run(dashboard.load()):
        logger.error("Não foi possível carregar a escala da sprint atual")
        raise typer.Exit(1)
    return dashboard


def resolver_time(dashboard: ScheduleDashboard, setup: SetupConfig, team_id: Optional[int]) -> int:
    resolved = team_id or dashboard.state.selected_team_id or setup.default_team_id
    if resolved is None:
        logger.error("Informe o time com --time ou defina default_team_id no setup")
        raise typer.Exit(1)
    return resolved


@app.command()
def resumo(
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    ),
    team_id: Optional[int] = typer.Option(None, "--time", help="Id do time")
):
    """Exibe o resumo de capacidade do time na sprint atual"""
    try:
        verificar_diretorios()
        configurar_logger()

        setup = carregar_setup(config_dir)
        dashboard = carregar_dashboard(setup)
        team_id = resolver_time(dashboard, setup, team_id)
        summary = dashboard.get_team_summary(team_id)
        dashboard.select_team(team_id)

        table = Table(title=f"{summary.team_name} - Sprint {summary.sprint_number}")
        for column in ("Membro", "Papel", "Horas", "Máximo", "Utilização", "Preenchimento", "Faltando"):
            table.add_column(column)
        for member in summary.member_summaries:
            table.add_row(
                member.member_name,
                "Gestor" if member.is_manager else "Regular",
                f"{member.actual_hours:g}",
                f"{member.max_possible_hours:g}",
                f"{member.utilization_percentage}%",
                f"{member.completion_percentage}%",
                str(member.missing_days),
            )
        table.add_row(
            "Total",
            f"{summary.manager_count} gestor(es)",
            f"{summary.actual_hours:g}",
            f"{summary.max_capacity_hours:g}",
            f"{summary.utilization_percentage}%",
            f"{summary.completion_percentage}%",
            "",
        )
        console.print(table)

        semanas = dashboard.get_sprint_weekly_hours(team_id)
        console.print(
            "Horas por semana: " + ", ".join(
                f"S{numero}: {horas:g}h" for numero, horas in enumerate(semanas, start=1)
            )
        )

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Erro ao gerar resumo: {str(e)}")
        raise typer.Exit(1)


@app.command("validar-sprint")
def validar_sprint(
    inicio: str = typer.Argument(..., help="Data de início (YYYY-MM-DD)"),
    semanas: int = typer.Argument(..., help="Duração em semanas (1 a 4)"),
    fim: Optional[str] = typer.Option(None, help="Data de término; calculada se omitida")
):
    """Valida a configuração de uma sprint"""
    try:
        start = date.fromisoformat(inicio)
        end = date.fromisoformat(fim) if fim else calculate_sprint_end_date(start, semanas)
    except (ValueError, CapacitySyncError) as e:
        console.print(f"[red]{str(e)}[/red]")
        raise typer.Exit(1)

    result = validate_sprint_config(start, end, semanas)
    console.print(f"Sprint de {start} a {end}: {count_working_days(start, end)} dias úteis")
    for warning in result.warnings:
        console.print(f"[yellow]Aviso: {warning}[/yellow]")
    for error in result.errors:
        console.print(f"[red]Erro: {error}[/red]")
    if not result.is_valid:
        raise typer.Exit(1)
    console.print("[green]Configuração válida[/green]")


@app.command()
def marcar(
    member_id: int = typer.Argument(..., help="Id do membro"),
    dia: str = typer.Argument(..., help="Data da marcação (YYYY-MM-DD)"),
    valor: str = typer.Argument(..., help="1, 0.5 ou X"),
    motivo: Optional[str] = typer.Option(None, help="Motivo da marcação"),
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    )
):
    """Marca um dia na escala e grava no serviço"""
    try:
        verificar_diretorios()
        configurar_logger()

        setup = carregar_setup(config_dir)
        dashboard = carregar_dashboard(setup)
        entry = dashboard.update_schedule_optimistic(member_id, dia, valor, motivo)
        asyncio.run(dashboard.store.flush_all())

        if dashboard.store.entry_state(member_id, entry.date) is EntryState.FAILED:
            logger.error(f"Marcação de {member_id} em {entry.date} não foi gravada")
            raise typer.Exit(1)
        console.print(f"[green]Membro {member_id} em {entry.date}: {entry.value.value}[/green]")

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Erro ao marcar escala: {str(e)}")
        raise typer.Exit(1)


@app.command()
def sincronizar(
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    )
):
    """Executa um ciclo de sincronização com o serviço"""
    try:
        verificar_diretorios()
        configurar_logger()

        setup = carregar_setup(config_dir)
        dashboard = carregar_dashboard(setup)
        result = asyncio.run(dashboard.sync_schedule_with_server())
        if not result.ok:
            logger.error(f"Sincronização falhou: {result.error}")
            raise typer.Exit(1)
        console.print(
            f"Sincronizado em {result.sync_timestamp}: {result.applied} aplicadas, "
            f"{result.skipped_shadowed} mantidas, {result.skipped_stale} desatualizadas"
        )

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Erro durante sincronização: {str(e)}")
        raise typer.Exit(1)


@app.command()
def exportar(
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    ),
    team_id: Optional[int] = typer.Option(None, "--time", help="Id do time")
):
    """Exporta a escala do time para Excel"""
    try:
        verificar_diretorios()
        configurar_logger()

        setup = carregar_setup(config_dir)
        dashboard = carregar_dashboard(setup)
        team_id = resolver_time(dashboard, setup, team_id)
        exporter = ScheduleExporter(setup.output_dir)
        path = exporter.export(
            dashboard.get_current_sprint_window(),
            dashboard.state.members_of_team(team_id),
            dashboard.get_schedule_data(),
            summary=dashboard.get_team_summary(team_id),
            filename=f"escala_time_{team_id}_sprint_{dashboard.get_current_sprint_window().sprint_number}.xlsx",
        )
        console.print(f"Planilha gerada em {path}")

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Erro ao exportar escala: {str(e)}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
