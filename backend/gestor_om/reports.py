from __future__ import annotations

import csv
import datetime as dt
import io
from typing import List, Sequence, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from .schemas import Category, Task, TaskStatus
from .services import category_name, dashboard_summary

CSV_HEADERS = [
    "ID",
    "OM",
    "Descrição",
    "Responsável Modificação",
    "Status",
    "Turno Execução",
    "Data Registro",
    "Tolerância Max",
    "Motivo",
]

STATUS_LABELS = {
    TaskStatus.PENDING: "PENDENTE",
    TaskStatus.EXECUTED: "EXECUTADO",
    TaskStatus.NOT_EXECUTED: "NÃO EXECUTADO",
}


def csv_filename(today: dt.date) -> str:
    return f"relatorio_conferencia_om_{today.isoformat()}.csv"


def pdf_filename(today: dt.date) -> str:
    return f"relatorio_operacional_{today.isoformat()}.pdf"


def build_csv(tasks: Sequence[Task], today: dt.date) -> Tuple[str, bytes]:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for task in tasks:
        writer.writerow(
            [
                task.id,
                task.om_number,
                task.description,
                task.updated_by_user_name or "N/A",
                task.status.value,
                task.executed_by_shift.value if task.executed_by_shift else "",
                task.date_executed or "",
                task.date_max or "",
                task.reason_not_executed or "",
            ]
        )
    # BOM so spreadsheet programs detect UTF-8
    return csv_filename(today), buffer.getvalue().encode("utf-8-sig")


def _wrap_text(text: str, width: int) -> List[str]:
    words = text.split()
    if not words:
        return [""]
    lines: List[str] = []
    current = words[0]
    for word in words[1:]:
        tentative = f"{current} {word}"
        if len(tentative) > width:
            lines.append(current)
            current = word
        else:
            current = tentative
    lines.append(current)
    return lines


def _format_registered(value: str | None) -> str:
    if not value:
        return "-"
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        return value[:10]


def build_pdf(tasks: Sequence[Task], today: dt.date, categories: Sequence[Category] = ()) -> Tuple[str, bytes]:
    """Render the operations audit report (KPIs, shift table, task table) on A4 pages.

    Each task row shows its category name below the OM number.
    """
    summary = dashboard_summary(tasks)
    output = io.BytesIO()
    pdf = canvas.Canvas(output, pagesize=A4)
    width, height = A4
    left = 2 * cm
    bottom = 2 * cm
    y = height - 2 * cm

    def new_page() -> float:
        pdf.showPage()
        pdf.setFont("Helvetica", 9)
        return height - 2 * cm

    title = "Audit de Operações"
    pdf.setTitle(f"{title} {today.isoformat()}")
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(left, y, title.upper())
    pdf.setFont("Helvetica", 9)
    pdf.drawRightString(width - left, y, f"EMITIDO EM {today.strftime('%d/%m/%Y')}")
    y -= 0.6 * cm
    pdf.setFont("Helvetica", 11)
    pdf.drawString(left, y, "Conferência de Responsáveis por Modificação")
    y -= 1.2 * cm

    kpis = [
        ("Total OMs", str(summary["total"])),
        ("Executadas", str(summary["executed"])),
        ("Não Realizadas", str(summary["not_executed"])),
        ("Taxa", f"{summary['execution_rate']}%"),
    ]
    column = (width - 2 * left) / len(kpis)
    for position, (label, value) in enumerate(kpis):
        x = left + position * column
        pdf.setFont("Helvetica", 9)
        pdf.drawString(x, y, label)
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(x, y - 0.6 * cm, value)
    y -= 1.6 * cm

    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawString(left, y, "Desempenho por Turno")
    y -= 0.6 * cm
    pdf.setFont("Helvetica", 10)
    for item in summary["shifts"]:
        pdf.drawString(left, y, f"Turno {item['shift'].value}")
        pdf.drawString(left + 4 * cm, y, f"Executadas: {item['executed']}")
        pdf.drawString(left + 9 * cm, y, f"Não Executadas: {item['not_executed']}")
        y -= 0.5 * cm
    y -= 0.6 * cm

    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawString(left, y, "Tabela de Conferência (Rastreabilidade)")
    y -= 0.7 * cm
    offsets = [0, 2.5 * cm, 9 * cm, 12 * cm, 15 * cm, 16.2 * cm]
    headers = ["OM", "Descrição", "Status", "Responsável", "Turno", "Data"]
    pdf.setFont("Helvetica-Bold", 9)
    for offset, header in zip(offsets, headers):
        pdf.drawString(left + offset, y, header)
    y -= 0.5 * cm

    pdf.setFont("Helvetica", 9)
    for task in tasks:
        description_lines = _wrap_text(task.description, 38)
        needed = 0.45 * cm * max(len(description_lines), 2) + 0.15 * cm
        if y - needed < bottom:
            y = new_page()
        row_top = y
        pdf.drawString(left + offsets[0], y, task.om_number[:14])
        pdf.setFont("Helvetica", 7)
        pdf.drawString(left + offsets[0], y - 0.45 * cm, category_name(categories, task.category_id)[:20])
        pdf.setFont("Helvetica", 9)
        pdf.drawString(left + offsets[2], y, STATUS_LABELS[task.status])
        pdf.drawString(left + offsets[3], y, (task.updated_by_user_name or "-")[:18])
        pdf.drawString(left + offsets[4], y, task.executed_by_shift.value if task.executed_by_shift else "-")
        pdf.drawString(left + offsets[5], y, _format_registered(task.date_executed))
        for line in description_lines:
            pdf.drawString(left + offsets[1], y, line)
            y -= 0.45 * cm
        y = min(y, row_top - 2 * 0.45 * cm) - 0.15 * cm

    if y - 1 * cm < bottom:
        y = new_page()
    pdf.setFont("Helvetica-Oblique", 8)
    pdf.drawString(left, bottom, "Documento de auditoria interna para controle de execuções por Administrador.")
    pdf.save()
    return pdf_filename(today), output.getvalue()
