from __future__ import annotations

import datetime as dt
import io

import pytest
from openpyxl import Workbook

from gestor_om.importer import (
    DEFAULT_CATEGORY_ID,
    UNMATCHED,
    apply_import,
    build_import_plan,
    normalize_date,
    read_spreadsheet,
    resolve_columns,
)
from gestor_om.schemas import Category, Shift, Task, TaskStatus

CATEGORIES = [Category(id="cat-mec", name="Mecânica"), Category(id="cat-ele", name="Elétrica")]


def _executed_task() -> Task:
    return Task(
        id="task-old",
        om_number="1001",
        description="Descrição antiga",
        category_id="cat-ele",
        status=TaskStatus.EXECUTED,
        date_executed="2024-03-01T10:00:00+00:00",
        executed_by_shift=Shift.B,
        updated_by_user_name="Rafael",
    )


def test_resolve_columns_matches_accented_and_spaced_headers() -> None:
    mapping = resolve_columns(["Nº OM", "Descrição da Atividade", "Centro de Trabalho", "Tolerância Mínima", "Prazo", "Categoria"])
    assert mapping.om_number == "Nº OM"
    assert mapping.description == "Descrição da Atividade"
    assert mapping.work_center == "Centro de Trabalho"
    assert mapping.date_min == "Tolerância Mínima"
    assert mapping.date_max == "Prazo"
    assert mapping.category == "Categoria"
    assert mapping.has_required


def test_resolve_columns_marks_missing_fields_unmatched() -> None:
    mapping = resolve_columns(["OM", "Observação"])
    assert mapping.om_number == "OM"
    assert mapping.description is UNMATCHED
    assert mapping.date_max is UNMATCHED
    assert not mapping.has_required


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("15/03/2024", "2024-03-15"),
        ("2024-03-15", "2024-03-15"),
        ("15-03-2024", "2024-03-15"),
        ("15.03.2024", "2024-03-15"),
        ("5/3/24", "2024-03-05"),
        ("15/03/2024 08:30", "2024-03-15"),
        (45000, "2023-03-15"),
        (45000.75, "2023-03-15"),
        (dt.datetime(2024, 3, 15, 23, 59), "2024-03-15"),
        (dt.date(2024, 3, 15), "2024-03-15"),
        ("not-a-date", ""),
        ("31/02/2024", ""),
        ("2024/03/15", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_date(raw, expected) -> None:
    assert normalize_date(raw) == expected


def test_row_without_description_is_skipped_silently() -> None:
    plan = build_import_plan([{"OM": "1", "Prazo": "garbage"}], [], CATEGORIES)
    assert plan.to_add == []
    assert plan.to_replace == []
    assert plan.warnings == []
    assert plan.skipped_rows == 1


def test_missing_date_column_leaves_date_blank_without_warning() -> None:
    plan = build_import_plan([{"OM": "1", "Descrição": "Lubrificar"}], [], CATEGORIES)
    assert len(plan.to_add) == 1
    task = plan.to_add[0]
    assert task.date_min == ""
    assert task.date_max == ""
    assert task.status == TaskStatus.PENDING
    assert plan.warnings == []


def test_unparseable_date_is_blank_and_reported() -> None:
    rows = [
        {"OM": "1", "Descrição": "Ok", "Prazo": "15/03/2024"},
        {"OM": "2", "Descrição": "Ruim", "Tol Min": "not-a-date", "Prazo": "amanhã"},
    ]
    plan = build_import_plan(rows, [], CATEGORIES)
    assert [t.date_max for t in plan.to_add] == ["2024-03-15", ""]
    assert plan.to_add[1].date_min == ""
    assert plan.warnings == [
        "Linha 3: Data Mínima inválida para OM 2.",
        "Linha 3: Data Máxima inválida para OM 2.",
    ]


def test_category_column_matches_case_insensitively_else_default() -> None:
    rows = [
        {"OM": "1", "Descrição": "A", "Categoria": "ELÉTRICA"},
        {"OM": "2", "Descrição": "B", "Categoria": "Hidráulica"},
        {"OM": "3", "Descrição": "C"},
    ]
    plan = build_import_plan(rows, [], CATEGORIES)
    assert [t.category_id for t in plan.to_add] == ["cat-ele", "cat-mec", "cat-mec"]

    without_categories = build_import_plan(rows[:1], [], [])
    assert without_categories.to_add[0].category_id == DEFAULT_CATEGORY_ID


def test_active_category_overrides_category_column() -> None:
    rows = [{"OM": "1", "Descrição": "A", "Categoria": "Elétrica"}]
    plan = build_import_plan(rows, [], CATEGORIES, active_category_id="cat-mec")
    assert plan.to_add[0].category_id == "cat-mec"


def test_extra_columns_are_kept_in_order_with_date_columns_normalized() -> None:
    rows = [
        {
            "OM": "1",
            "Equipamento": "Bomba B-12",
            "Descrição": "Trocar selo",
            "Data Criação": "01/02/2024",
            "Data Liberação": "pendente",
            "Horas": 4,
        }
    ]
    task = build_import_plan(rows, [], CATEGORIES).to_add[0]
    assert task.additional_data == {
        "Equipamento": "Bomba B-12",
        "Data Criação": "2024-02-01",
        "Data Liberação": "pendente",
        "Horas": 4,
    }
    assert list(task.additional_data) == ["Equipamento", "Data Criação", "Data Liberação", "Horas"]


def test_duplicate_of_executed_task_becomes_pending_replacement() -> None:
    existing = _executed_task()
    rows = [{"OM": 1001, "Descrição": "Descrição nova", "Categoria": "Elétrica", "Prazo": 45000}]
    plan = build_import_plan(rows, [existing], CATEGORIES)

    assert plan.to_add == []
    [replacement] = plan.to_replace
    assert replacement.id == "task-old"
    assert replacement.description == "Descrição nova"
    assert replacement.date_max == "2023-03-15"
    assert replacement.status == TaskStatus.PENDING
    assert replacement.date_executed is None
    assert replacement.executed_by_shift is None
    assert replacement.reason_not_executed is None
    assert replacement.updated_by_user_name is None
    assert existing.status == TaskStatus.EXECUTED


def test_same_om_in_other_category_is_a_new_task() -> None:
    plan = build_import_plan([{"OM": "1001", "Descrição": "X"}], [_executed_task()], CATEGORIES)
    assert len(plan.to_add) == 1
    assert plan.to_add[0].category_id == "cat-mec"
    assert plan.to_replace == []


def test_apply_import_confirmed_and_declined() -> None:
    existing = _executed_task()
    rows = [
        {"OM": "1001", "Descrição": "Nova", "Categoria": "Elétrica"},
        {"OM": "2002", "Descrição": "Outra", "Categoria": "Elétrica"},
    ]
    plan = build_import_plan(rows, [existing], CATEGORIES)

    confirmed = apply_import([existing], plan, replace_duplicates=True)
    assert [t.om_number for t in confirmed] == ["1001", "2002"]
    assert confirmed[0].status == TaskStatus.PENDING
    assert confirmed[0].description == "Nova"

    declined = apply_import([existing], plan, replace_duplicates=False)
    assert len(declined) == 2
    assert declined[0] is existing
    assert declined[0].status == TaskStatus.EXECUTED


def test_read_spreadsheet_xlsx_skips_empty_cells() -> None:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["OM", "Descrição", "Prazo", "Local"])
    sheet.append([1234, "Inspeção", dt.datetime(2024, 5, 2), None])
    sheet.append([None, None, None, None])
    sheet.append([1235, None, "10/05/2024", "Moagem"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    rows = read_spreadsheet(buffer.getvalue(), "plano.xlsx")
    assert rows == [
        {"OM": 1234, "Descrição": "Inspeção", "Prazo": dt.datetime(2024, 5, 2)},
        {"OM": 1235, "Prazo": "10/05/2024", "Local": "Moagem"},
    ]
    plan = build_import_plan(rows, [], CATEGORIES)
    assert [t.om_number for t in plan.to_add] == ["1234"]
    assert plan.to_add[0].date_max == "2024-05-02"
    assert plan.skipped_rows == 1


def test_read_spreadsheet_csv_with_semicolons() -> None:
    content = "OM;Descrição;Prazo\n77;Limpeza;01/06/2024\n".encode("utf-8-sig")
    rows = read_spreadsheet(content, "plano.csv")
    assert rows == [{"OM": "77", "Descrição": "Limpeza", "Prazo": "01/06/2024"}]


def test_read_spreadsheet_rejects_unknown_format() -> None:
    with pytest.raises(ValueError):
        read_spreadsheet(b"whatever", "plano.pdf")
