import pytest
from datetime import date
import openpyxl
from capacity_sync.models.entities import ScheduleEntry, SprintWindow, Team, TeamMember
from capacity_sync.services.calendar import get_working_days
from capacity_sync.services.capacity import compute_team_summary
from capacity_sync.services.export import ScheduleExporter


@pytest.fixture
def sprint():
    return SprintWindow(
        start_date=date(2024, 1, 14), end_date=date(2024, 1, 25), length_weeks=2, sprint_number=7
    )


@pytest.fixture
def members():
    return [
        TeamMember(id=10, name="Ana Souza", team_id=1, role="manager"),
        TeamMember(id=11, name="Bruno Lima", team_id=1),
    ]


@pytest.fixture
def schedule():
    """Fixture para marcações de dois membros"""
    return {
        10: {date(2024, 1, 14): ScheduleEntry(member_id=10, date=date(2024, 1, 14), value="0.5")},
        11: {
            date(2024, 1, 14): ScheduleEntry(member_id=11, date=date(2024, 1, 14), value="1"),
            date(2024, 1, 15): ScheduleEntry(member_id=11, date=date(2024, 1, 15), value="X"),
        },
    }


@pytest.fixture
def exporter(tmp_path):
    return ScheduleExporter(str(tmp_path))


def test_cell_color(exporter, schedule):
    """Testa a cor de cada tipo de célula"""
    days = {d.date: d for d in get_working_days(date(2024, 1, 14), date(2024, 1, 20))}

    assert exporter.cell_color(days[date(2024, 1, 14)], schedule[11][date(2024, 1, 14)]) == 'full'
    assert exporter.cell_color(days[date(2024, 1, 14)], schedule[10][date(2024, 1, 14)]) == 'half'
    assert exporter.cell_color(days[date(2024, 1, 15)], schedule[11][date(2024, 1, 15)]) == 'absent'
    assert exporter.cell_color(days[date(2024, 1, 16)], None) == 'empty'
    assert exporter.cell_color(days[date(2024, 1, 19)], None) == 'weekend'


def test_export_grid(exporter, sprint, members, schedule, tmp_path):
    """Testa o bloco de cada membro na planilha"""
    path = exporter.export(sprint, members, schedule)

    assert path == tmp_path / "escala_sprint_7.xlsx"
    wb = openpyxl.load_workbook(path)
    ws = wb["Sprint 7"]

    assert ws.cell(row=1, column=1).value == "Ana Souza (gestor)"
    assert ws.cell(row=2, column=2).value.date() == date(2024, 1, 14)
    assert ws.cell(row=3, column=1).value == "Marcação"
    assert ws.cell(row=3, column=2).value == "0.5"
    assert ws.cell(row=3, column=2).fill.start_color.rgb.endswith("B3D1FF")

    # Segundo bloco começa após nome, datas, marcações e uma linha de espaço
    assert ws.cell(row=5, column=1).value == "Bruno Lima"
    assert ws.cell(row=7, column=2).value == "1"
    assert ws.cell(row=7, column=2).fill.start_color.rgb.endswith("B3FFB3")
    assert ws.cell(row=7, column=3).value == "X"
    assert ws.cell(row=7, column=4).value is None
    assert ws.cell(row=7, column=4).fill.start_color.rgb.endswith("FFFFB3")
    # 2024-01-19 (sexta) é a sexta coluna de datas
    assert ws.cell(row=7, column=7).fill.start_color.rgb.endswith("FFB3B3")
    # Fim de semana recebe a ausência gerada automaticamente
    assert ws.cell(row=7, column=7).value == "X"
    assert ws.cell(row=3, column=8).value == "X"


def test_export_legend(exporter, sprint, members, schedule):
    path = exporter.export(sprint, members, schedule)
    ws = openpyxl.load_workbook(path)["Sprint 7"]

    labels = [ws.cell(row=row, column=1).value for row in range(1, ws.max_row + 1)]

    assert "Legenda:" in labels
    assert "Meio Período (0.5)" in labels


def test_export_summary_sheet(exporter, sprint, members, schedule):
    """Testa a aba de resumo de capacidade"""
    summary = compute_team_summary(Team(id=1, name="Plataforma"), members, sprint, schedule)

    path = exporter.export(sprint, members, schedule, summary=summary, filename="time_1.xlsx")
    wb = openpyxl.load_workbook(path)

    assert path.name == "time_1.xlsx"
    assert wb.sheetnames == ["Sprint 7", "Resumo"]
    ws = wb["Resumo"]
    assert ws.cell(row=1, column=1).value == "Membro"
    assert ws.cell(row=2, column=1).value == "Ana Souza"
    assert ws.cell(row=2, column=2).value == "Gestor"
    assert ws.cell(row=3, column=4).value == 7
    assert ws.cell(row=4, column=1).value == "Total Plataforma"
    assert ws.cell(row=4, column=4).value == 10.5


def test_export_without_summary(exporter, sprint, members, schedule):
    path = exporter.export(sprint, members, schedule)

    assert openpyxl.load_workbook(path).sheetnames == ["Sprint 7"]
