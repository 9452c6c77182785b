from datetime import date
from pathlib import Path
from typing import Dict, List, Optional
from loguru import logger
import openpyxl
from openpyxl.styles import PatternFill, Border, Side, Alignment, Font
from openpyxl.utils import get_column_letter

from ..models.entities import (
    ScheduleEntry,
    SprintWindow,
    TeamCapacitySummary,
    TeamMember,
    WorkValue,
    WorkingDay,
)
from .calendar import get_working_days
from .capacity import auto_generate_weekend_entries


class ScheduleExporter:
    """Exporta a escala da sprint e o resumo de capacidade para Excel"""

    def __init__(self, output_dir: str = "output"):
        """
        Inicializa o exportador

        Args:
            output_dir: Diretório onde a planilha será gravada
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.excel_colors = {
            'weekend': PatternFill(start_color='FFB3B3', end_color='FFB3B3', fill_type='solid'),  # Vermelho claro
            'absent': PatternFill(start_color='B3B3B3', end_color='B3B3B3', fill_type='solid'),   # Cinza claro
            'full': PatternFill(start_color='B3FFB3', end_color='B3FFB3', fill_type='solid'),     # Verde claro
            'half': PatternFill(start_color='B3D1FF', end_color='B3D1FF', fill_type='solid'),     # Azul claro
            'empty': PatternFill(start_color='FFFFB3', end_color='FFFFB3', fill_type='solid')     # Amarelo claro
        }

    def cell_color(self, day: WorkingDay, entry: Optional[ScheduleEntry]) -> str:
        """Chave da cor da célula para o dia e a marcação"""
        if day.is_weekend:
            return 'weekend'
        if entry is None:
            return 'empty'
        if entry.value is WorkValue.FULL_DAY:
            return 'full'
        if entry.value is WorkValue.HALF_DAY:
            return 'half'
        return 'absent'

    def export(
        self,
        sprint: SprintWindow,
        members: List[TeamMember],
        schedule: Dict[int, Dict[date, ScheduleEntry]],
        summary: Optional[TeamCapacitySummary] = None,
        filename: Optional[str] = None,
    ) -> Path:
        """
        Gera a planilha da sprint

        Args:
            sprint: Janela da sprint
            members: Membros exibidos, na ordem desejada
            schedule: Marcações efetivas por membro e data
            summary: Resumo de capacidade do time (gera a aba de resumo)
            filename: Nome do arquivo (padrão escala_sprint_<n>.xlsx)

        Returns:
            Path: Caminho da planilha gerada
        """
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = f"Sprint {sprint.sprint_number}"

        days = get_working_days(sprint.start_date, sprint.end_date)
        last_col = len(days) + 1
        last_col_letter = get_column_letter(last_col)

        medium = Side(style='medium')
        thin = Side(style='thin')

        for col in range(1, last_col + 1):
            ws.column_dimensions[get_column_letter(col)].width = 12
        ws.column_dimensions['A'].width = 24

        current_row = 1
        for member in members:
            bloco_inicio = current_row
            bloco_fim = current_row + 2  # nome, datas, marcações
            entries = {
                entry.date: entry for entry in auto_generate_weekend_entries(member.id, days)
            }
            entries.update(schedule.get(member.id, {}))

            # Linha 1: nome do membro (mesclado até a última data)
            ws.merge_cells(f'A{current_row}:{last_col_letter}{current_row}')
            label = f"{member.name} (gestor)" if member.is_manager else member.name
            ws.cell(row=current_row, column=1, value=label)
            ws.cell(row=current_row, column=1).font = Font(bold=True)
            ws.cell(row=current_row, column=1).alignment = Alignment(horizontal='center')
            current_row += 1

            # Linha 2: datas
            for col, day in enumerate(days, start=2):
                cell = ws.cell(row=current_row, column=col, value=day.date)
                cell.number_format = 'dd/mm/yyyy'
                cell.alignment = Alignment(horizontal='center')
            current_row += 1

            # Linha 3: marcações
            ws.cell(row=current_row, column=1, value="Marcação")
            ws.cell(row=current_row, column=1).font = Font(bold=True)
            ws.cell(row=current_row, column=1).alignment = Alignment(horizontal='center')
            for col, day in enumerate(days, start=2):
                entry = entries.get(day.date)
                cell = ws.cell(row=current_row, column=col, value=entry.value.value if entry else None)
                cell.alignment = Alignment(horizontal='center')
                cell.fill = self.excel_colors[self.cell_color(day, entry)]
            current_row += 1

            # Borda média externa, fina nas células internas
            for row in range(bloco_inicio, bloco_fim + 1):
                for col in range(1, last_col + 1):
                    ws.cell(row=row, column=col).border = Border(
                        left=medium if col == 1 else thin,
                        right=medium if col == last_col else thin,
                        top=medium if row == bloco_inicio else thin,
                        bottom=medium if row == bloco_fim else thin
                    )

            # Espaçamento entre membros
            current_row += 1

        self._write_legend(ws, current_row + 1, medium, thin)
        if summary is not None:
            self._write_summary(wb, summary)

        excel_path = self.output_dir / (filename or f"escala_sprint_{sprint.sprint_number}.xlsx")
        wb.save(str(excel_path))
        logger.info(f"Planilha da escala gerada em {excel_path}")
        return excel_path

    def _write_legend(self, ws, legend_row: int, medium: Side, thin: Side) -> None:
        legend_items = [
            ("Fim de Semana", self.excel_colors['weekend']),
            ("Ausente (X)", self.excel_colors['absent']),
            ("Dia Inteiro (1)", self.excel_colors['full']),
            ("Meio Período (0.5)", self.excel_colors['half']),
            ("Sem Marcação", self.excel_colors['empty'])
        ]
        ws.merge_cells(f'A{legend_row}:D{legend_row}')
        ws.cell(row=legend_row, column=1, value="Legenda:")
        ws.cell(row=legend_row, column=1).font = Font(bold=True)
        for i, (label, color) in enumerate(legend_items):
            row = legend_row + i + 1
            ws.merge_cells(f'A{row}:C{row}')
            ws.cell(row=row, column=1, value=label)
            ws.cell(row=row, column=4).fill = color
        last_row = legend_row + len(legend_items)
        for row in range(legend_row, last_row + 1):
            for col in range(1, 5):
                ws.cell(row=row, column=col).border = Border(
                    left=medium if col == 1 else thin,
                    right=medium if col == 4 else thin,
                    top=medium if row == legend_row else thin,
                    bottom=medium if row == last_row else thin
                )

    def _write_summary(self, wb, summary: TeamCapacitySummary) -> None:
        ws = wb.create_sheet("Resumo")
        headers = [
            "Membro", "Papel", "Horas Máximas", "Horas Marcadas", "Utilização (%)",
            "Dias Preenchidos", "Dias Úteis", "Dias Faltando", "Preenchimento (%)"
        ]
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal='center')
            ws.column_dimensions[get_column_letter(col)].width = 18

        row = 2
        for member in summary.member_summaries:
            values = [
                member.member_name,
                "Gestor" if member.is_manager else "Regular",
                member.max_possible_hours,
                member.actual_hours,
                member.utilization_percentage,
                member.working_days_filled,
                member.total_working_days,
                member.missing_days,
                member.completion_percentage,
            ]
            for col, value in enumerate(values, start=1):
                ws.cell(row=row, column=col, value=value)
            row += 1

        totals = [
            f"Total {summary.team_name}",
            f"{summary.manager_count} gestor(es)",
            summary.max_capacity_hours,
            summary.actual_hours,
            summary.utilization_percentage,
            None,
            None,
            None,
            summary.completion_percentage,
        ]
        for col, value in enumerate(totals, start=1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.font = Font(bold=True)
