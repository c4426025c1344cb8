"""Spreadsheet import: column sniffing, date normalization and duplicate reconciliation.

Rows are plain ``header -> cell`` mappings, as produced by
:func:`read_spreadsheet`. Cells may be strings, numbers (spreadsheet date
serials for date columns) or ``date``/``datetime`` values when openpyxl knows
the cell is date formatted.

Matching is heuristic and tolerant: a row without a recognizable work-order
number or description column is skipped, and a date that cannot be parsed is
left blank and reported as a warning instead of rejecting the row.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl import load_workbook

from .schemas import Category, Task, TaskStatus
from .utils import new_id, normalize_key

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_ID = "default"
SPREADSHEET_EPOCH = dt.date(1899, 12, 30)
SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}
CSV_SUFFIXES = {".csv", ".txt"}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DMY_DATE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})$")


class _Unmatched:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNMATCHED"

    def __bool__(self) -> bool:
        return False


UNMATCHED = _Unmatched()
Column = Union[str, _Unmatched]


@dataclass(frozen=True)
class FieldAliases:
    exact: FrozenSet[str] = frozenset()
    contains: Tuple[str, ...] = ()

    def matches(self, normalized: str) -> bool:
        if not normalized:
            return False
        return normalized in self.exact or any(part in normalized for part in self.contains)


FIELD_ALIASES: Dict[str, FieldAliases] = {
    "om_number": FieldAliases(exact=frozenset({"nom", "om", "numeroom", "numero"})),
    "description": FieldAliases(
        exact=frozenset({"descricao", "desc"}),
        contains=("descricaodaatividade", "atividade"),
    ),
    "work_center": FieldAliases(exact=frozenset({"centrodetrabalho", "ct", "local", "setor", "centro"})),
    "date_min": FieldAliases(
        exact=frozenset({"toleranciaminima", "tolmin", "dataminima", "inicio"}),
        contains=("datainicio",),
    ),
    "date_max": FieldAliases(
        exact=frozenset({"toleranciamaxima", "tolmax", "datamaxima", "fim", "prazo"}),
        contains=("datafim",),
    ),
    "category": FieldAliases(contains=("cat",)),
}


@dataclass(frozen=True)
class ColumnMapping:
    om_number: Column = UNMATCHED
    description: Column = UNMATCHED
    work_center: Column = UNMATCHED
    date_min: Column = UNMATCHED
    date_max: Column = UNMATCHED
    category: Column = UNMATCHED

    @property
    def has_required(self) -> bool:
        return self.om_number is not UNMATCHED and self.description is not UNMATCHED

    def mapped_headers(self) -> FrozenSet[str]:
        return frozenset(
            column
            for column in (
                self.om_number,
                self.description,
                self.work_center,
                self.date_min,
                self.date_max,
                self.category,
            )
            if isinstance(column, str)
        )


@dataclass
class ImportPlan:
    to_add: List[Task] = field(default_factory=list)
    to_replace: List[Task] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped_rows: int = 0


def resolve_columns(headers: Iterable[Any]) -> ColumnMapping:
    """Map each task field to the first header whose normalized name is an accepted alias."""
    normalized = [(header, normalize_key(header)) for header in headers]
    resolved: Dict[str, Column] = {}
    for field_name, aliases in FIELD_ALIASES.items():
        resolved[field_name] = next(
            (str(header) for header, key in normalized if aliases.matches(key)),
            UNMATCHED,
        )
    return ColumnMapping(**resolved)


def has_value(raw: Any) -> bool:
    if raw is None or raw is False:
        return False
    if isinstance(raw, str):
        return bool(raw.strip())
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw != 0
    return True


def normalize_date(value: Any) -> str:
    """Return ``YYYY-MM-DD`` for any accepted date representation, ``""`` otherwise."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, dt.datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return ""
        try:
            return (SPREADSHEET_EPOCH + dt.timedelta(days=math.floor(value))).isoformat()
        except (OverflowError, ValueError):
            return ""

    text = str(value).strip()
    if not text:
        return ""
    token = text.split()[0]
    match = _ISO_DATE.match(token)
    if match:
        year, month, day = match.groups()
    else:
        match = _DMY_DATE.match(token)
        if not match:
            return ""
        day, month, year = match.groups()
        if len(year) == 2:
            year = f"20{year}"
    try:
        return dt.date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return ""


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _json_cell(value: Any) -> Any:
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return value


def _resolve_category(
    row: Mapping[str, Any],
    mapping: ColumnMapping,
    categories: Sequence[Category],
    active_category_id: Optional[str],
) -> str:
    if active_category_id:
        return active_category_id
    category_id = categories[0].id if categories else DEFAULT_CATEGORY_ID
    if isinstance(mapping.category, str):
        raw_name = row.get(mapping.category)
        if has_value(raw_name):
            wanted = _cell_text(raw_name).casefold()
            found = next((c for c in categories if c.name.strip().casefold() == wanted), None)
            if found:
                category_id = found.id
    return category_id


def _additional_data(row: Mapping[str, Any], mapping: ColumnMapping) -> Dict[str, Any]:
    mapped = mapping.mapped_headers()
    extra: Dict[str, Any] = {}
    for header, raw in row.items():
        if header in mapped:
            continue
        if "data" in normalize_key(header):
            extra[header] = normalize_date(raw) or _json_cell(raw)
        else:
            extra[header] = _json_cell(raw)
    return extra


def build_import_plan(
    rows: Iterable[Mapping[str, Any]],
    tasks: Sequence[Task],
    categories: Sequence[Category],
    active_category_id: Optional[str] = None,
) -> ImportPlan:
    """Classify rows into new tasks and replacements of existing (OM number, category) pairs."""
    plan = ImportPlan()
    existing = {(task.om_number, task.category_id): task for task in reversed(tasks)}

    for index, row in enumerate(rows):
        mapping = resolve_columns(row.keys())
        if not mapping.has_required:
            plan.skipped_rows += 1
            continue

        om_number = _cell_text(row.get(mapping.om_number))
        description = _cell_text(row.get(mapping.description))
        work_center = _cell_text(row.get(mapping.work_center)) if isinstance(mapping.work_center, str) else ""

        line = index + 2
        dates: Dict[str, str] = {}
        for field_name, label in (("date_min", "Mínima"), ("date_max", "Máxima")):
            column = getattr(mapping, field_name)
            raw = row.get(column) if isinstance(column, str) else None
            parsed = normalize_date(raw) if has_value(raw) else ""
            if has_value(raw) and not parsed:
                plan.warnings.append(f"Linha {line}: Data {label} inválida para OM {om_number}.")
            dates[field_name] = parsed

        category_id = _resolve_category(row, mapping, categories, active_category_id)
        additional_data = _additional_data(row, mapping)

        current = existing.get((om_number, category_id))
        if current is not None:
            replacement = current.model_copy(
                update={
                    "description": description,
                    "work_center": work_center,
                    "date_min": dates["date_min"],
                    "date_max": dates["date_max"],
                    "additional_data": additional_data,
                }
            ).clear_execution()
            plan.to_replace.append(replacement)
        else:
            plan.to_add.append(
                Task(
                    id=new_id("task"),
                    om_number=om_number,
                    description=description,
                    category_id=category_id,
                    work_center=work_center,
                    date_min=dates["date_min"],
                    date_max=dates["date_max"],
                    status=TaskStatus.PENDING,
                    additional_data=additional_data,
                )
            )

    logger.info(
        "Import plan: %d new, %d duplicates, %d skipped rows, %d date warnings",
        len(plan.to_add),
        len(plan.to_replace),
        plan.skipped_rows,
        len(plan.warnings),
    )
    return plan


def apply_replacements(tasks: Sequence[Task], replacements: Sequence[Task]) -> List[Task]:
    by_id = {task.id: task for task in replacements}
    return [by_id.get(task.id, task) for task in tasks]


def apply_import(tasks: Sequence[Task], plan: ImportPlan, *, replace_duplicates: bool) -> List[Task]:
    """Insert new tasks; replace duplicates only when confirmed, otherwise drop them."""
    updated = [*tasks, *plan.to_add]
    if replace_duplicates and plan.to_replace:
        updated = apply_replacements(updated, plan.to_replace)
    return updated


def _unique_headers(raw_headers: Sequence[Any]) -> List[str]:
    seen: Dict[str, int] = {}
    headers: List[str] = []
    for raw in raw_headers:
        header = _cell_text(raw)
        if not header:
            headers.append("")
            continue
        count = seen.get(header, 0)
        seen[header] = count + 1
        headers.append(header if count == 0 else f"{header}_{count}")
    return headers


def _rows_from_table(table: Iterable[Sequence[Any]]) -> List[Dict[str, Any]]:
    iterator = iter(table)
    header_row = next(iterator, None)
    if header_row is None:
        return []
    headers = _unique_headers(header_row)
    rows: List[Dict[str, Any]] = []
    for values in iterator:
        record = {
            header: value
            for header, value in zip(headers, values)
            if header and value is not None and not (isinstance(value, str) and not value.strip())
        }
        if record:
            rows.append(record)
    return rows


def _read_xlsx(content: bytes) -> List[Dict[str, Any]]:
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        return _rows_from_table(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def _read_csv(content: bytes) -> List[Dict[str, Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=";,\t")
    except csv.Error:
        dialect = csv.excel
    return _rows_from_table(csv.reader(io.StringIO(text), dialect))


def read_spreadsheet(content: bytes, filename: str) -> List[Dict[str, Any]]:
    """Parse the first sheet of an upload into ``header -> cell`` rows, omitting empty cells."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        return _read_xlsx(content)
    if suffix in CSV_SUFFIXES:
        return _read_csv(content)
    raise ValueError(f"Formato de arquivo não suportado: {suffix or filename}")
