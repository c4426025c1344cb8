from __future__ import annotations

import csv
import datetime as dt
import io

from gestor_om.reports import CSV_HEADERS, build_csv, build_pdf
from gestor_om.schemas import Category, Shift, Task, TaskStatus

TODAY = dt.date(2024, 3, 10)


def _tasks() -> list[Task]:
    return [
        Task(
            id="task-1",
            om_number="1001",
            description='Trocar "selo", bomba B-12',
            category_id="cat-1",
            date_max="2024-03-12",
            status=TaskStatus.NOT_EXECUTED,
            date_executed="2024-03-09T14:00:00+00:00",
            executed_by_shift=Shift.C,
            reason_not_executed="Falta de peça",
            updated_by_user_name="Rafael",
        ),
        Task(id="task-2", om_number="1002", description="Lubrificar", category_id="cat-1"),
    ]


def test_csv_has_bom_header_and_quoted_fields() -> None:
    filename, content = build_csv(_tasks(), TODAY)
    assert filename == "relatorio_conferencia_om_2024-03-10.csv"
    assert content.startswith(b"\xef\xbb\xbf")

    rows = list(csv.reader(io.StringIO(content.decode("utf-8-sig"))))
    assert rows[0] == CSV_HEADERS
    assert rows[1] == [
        "task-1",
        "1001",
        'Trocar "selo", bomba B-12',
        "Rafael",
        "not_executed",
        "C",
        "2024-03-09T14:00:00+00:00",
        "2024-03-12",
        "Falta de peça",
    ]
    assert rows[2] == ["task-2", "1002", "Lubrificar", "N/A", "pending", "", "", "", ""]
    assert '"Trocar ""selo"", bomba B-12"' in content.decode("utf-8-sig")


def test_csv_without_tasks_is_header_only() -> None:
    _, content = build_csv([], TODAY)
    assert content.decode("utf-8-sig").splitlines() == [",".join(CSV_HEADERS)]


def test_pdf_report_renders_many_pages() -> None:
    tasks = _tasks() * 60
    filename, content = build_pdf(tasks, TODAY, [Category(id="cat-1", name="Mecânica")])
    assert filename == "relatorio_operacional_2024-03-10.pdf"
    assert content.startswith(b"%PDF")
    assert b"%%EOF" in content[-16:]
