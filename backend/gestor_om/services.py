from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status

from .config import settings
from .importer import apply_replacements, build_import_plan, read_spreadsheet
from .schemas import AppState, Category, Shift, Task, TaskStatus, User, UserRole
from .security import hash_password
from .sessions import SessionContext
from .state import RuntimeState
from .storage import DEFAULT_MANAGER
from .utils import new_id

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

ALL = "all"
URGENT_BADGE_DAYS = 3
REPORT_SHIFTS: Tuple[Shift, ...] = (Shift.A, Shift.B, Shift.C, Shift.D)


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def local_today() -> dt.date:
    return _now().astimezone(LOCAL_TZ).date()


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def _require_manager(ctx: SessionContext) -> None:
    if not ctx.is_manager:
        raise _forbidden("Apenas o Gerente pode realizar esta ação")


def _require_status_manager(ctx: SessionContext) -> None:
    if not ctx.can_manage_status:
        raise _forbidden("Apenas Gerente ou Administrador podem alterar o status")


def require_reports_access(ctx: SessionContext) -> None:
    if not ctx.can_manage_status:
        raise _forbidden("Acesso restrito a Gerente ou Administrador")


def _find_task(state: AppState, task_id: str) -> Tuple[int, Task]:
    for index, task in enumerate(state.tasks):
        if task.id == task_id:
            return index, task
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tarefa não encontrada")


# Users


def create_user(
    runtime: RuntimeState,
    ctx: SessionContext,
    name: str,
    username: str,
    password: str,
    role: UserRole,
    shift: Optional[Shift],
) -> User:
    if ctx.user.role == UserRole.EXECUTOR:
        raise _forbidden("Executantes não podem criar usuários")
    if role == UserRole.MANAGER and not ctx.is_manager:
        raise _forbidden("Apenas um Gerente pode criar outro Gerente.")
    if role == UserRole.ADMIN and not ctx.is_manager:
        raise _forbidden("Apenas um Gerente pode criar Administradores.")

    with runtime.mutate() as state:
        if any(u.username == username for u in state.users):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Este nome de usuário já está em uso.")
        user = User(
            id=new_id("user"),
            name=name.strip(),
            username=username,
            password_hash=hash_password(password),
            role=role,
            shift=(shift or Shift.A) if role == UserRole.EXECUTOR else None,
        )
        state.users.append(user)
    return user


def delete_user(runtime: RuntimeState, ctx: SessionContext, user_id: str) -> None:
    _require_manager(ctx)
    with runtime.mutate() as state:
        user = next((u for u in state.users if u.id == user_id), None)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuário não encontrado")
        if user.username == DEFAULT_MANAGER.username:
            raise _forbidden("O gerente padrão não pode ser excluído")
        state.users = [u for u in state.users if u.id != user_id]


# Categories


def create_category(runtime: RuntimeState, ctx: SessionContext, name: str) -> Category:
    _require_manager(ctx)
    if not name or not name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nome da categoria obrigatório")
    category = Category(id=new_id("cat"), name=name.strip())
    with runtime.mutate() as state:
        state.categories.append(category)
    return category


def delete_category(runtime: RuntimeState, ctx: SessionContext, category_id: str) -> None:
    """Remove the category only; its tasks keep the now dangling id."""
    _require_manager(ctx)
    with runtime.mutate() as state:
        if not any(c.id == category_id for c in state.categories):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Categoria não encontrada")
        state.categories = [c for c in state.categories if c.id != category_id]


def category_name(categories: Iterable[Category], category_id: str) -> str:
    return next((c.name for c in categories if c.id == category_id), "Geral")


# Tasks


def filter_tasks(
    tasks: Iterable[Task],
    category_id: Optional[str] = None,
    work_center: Optional[str] = None,
    query: Optional[str] = None,
    tab: Optional[str] = None,
) -> List[Task]:
    needle = (query or "").lower()
    selected: List[Task] = []
    for task in tasks:
        if category_id and category_id != ALL and task.category_id != category_id:
            continue
        if work_center and work_center != ALL and task.work_center != work_center:
            continue
        if needle and not (
            needle in task.om_number.lower()
            or needle in task.description.lower()
            or needle in (task.work_center or "").lower()
        ):
            continue
        if tab == "pending" and task.status != TaskStatus.PENDING:
            continue
        if tab == "completed" and task.status == TaskStatus.PENDING:
            continue
        selected.append(task)
    return selected


def list_work_centers(tasks: Iterable[Task]) -> List[str]:
    return sorted({task.work_center.strip() for task in tasks if task.work_center and task.work_center.strip()})


def get_task(runtime: RuntimeState, task_id: str) -> Task:
    _, task = _find_task(runtime.snapshot(), task_id)
    return task


def create_task(
    runtime: RuntimeState,
    ctx: SessionContext,
    om_number: str,
    description: str,
    category_id: str,
    work_center: Optional[str] = None,
    date_min: str = "",
    date_max: str = "",
) -> Task:
    _require_manager(ctx)
    if not om_number.strip() or not description.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="OM e descrição são obrigatórias")
    task = Task(
        id=new_id("task"),
        om_number=om_number.strip(),
        description=description.strip(),
        category_id=category_id,
        work_center=work_center,
        date_min=date_min,
        date_max=date_max,
    )
    with runtime.mutate() as state:
        state.tasks.append(task)
    return task


def delete_task(runtime: RuntimeState, ctx: SessionContext, task_id: str) -> None:
    _require_manager(ctx)
    with runtime.mutate() as state:
        _find_task(state, task_id)
        state.tasks = [t for t in state.tasks if t.id != task_id]


def clear_tasks(runtime: RuntimeState, ctx: SessionContext) -> int:
    _require_manager(ctx)
    with runtime.mutate() as state:
        removed = len(state.tasks)
        state.tasks = []
    logger.info("%s removeu todas as %d tarefas", ctx.user.username, removed)
    return removed


# Status transitions


def _invalid_transition(task: Task, target: TaskStatus) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Transição inválida: {task.status.value} -> {target.value}",
    )


def apply_executed(task: Task, shift: Shift, user_name: str, now: Optional[dt.datetime] = None) -> Task:
    if task.status != TaskStatus.PENDING:
        raise _invalid_transition(task, TaskStatus.EXECUTED)
    return task.model_copy(
        update={
            "status": TaskStatus.EXECUTED,
            "date_executed": (now or _now()).isoformat(),
            "executed_by_shift": shift,
            "reason_not_executed": None,
            "updated_by_user_name": user_name,
        }
    )


def apply_not_executed(
    task: Task,
    shift: Shift,
    reason: str,
    user_name: str,
    now: Optional[dt.datetime] = None,
) -> Task:
    if task.status != TaskStatus.PENDING:
        raise _invalid_transition(task, TaskStatus.NOT_EXECUTED)
    if not reason or not reason.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Motivo obrigatório")
    return task.model_copy(
        update={
            "status": TaskStatus.NOT_EXECUTED,
            "date_executed": (now or _now()).isoformat(),
            "executed_by_shift": shift,
            "reason_not_executed": reason.strip(),
            "updated_by_user_name": user_name,
        }
    )


def apply_reset(task: Task) -> Task:
    if task.status == TaskStatus.PENDING:
        raise _invalid_transition(task, TaskStatus.PENDING)
    return task.clear_execution()


def _update_task(runtime: RuntimeState, task_id: str, change) -> Task:
    with runtime.mutate() as state:
        index, task = _find_task(state, task_id)
        updated = change(task)
        state.tasks[index] = updated
    return updated


def mark_executed(runtime: RuntimeState, ctx: SessionContext, task_id: str, shift: Shift) -> Task:
    _require_status_manager(ctx)
    return _update_task(runtime, task_id, lambda task: apply_executed(task, shift, ctx.user.name))


def mark_not_executed(
    runtime: RuntimeState,
    ctx: SessionContext,
    task_id: str,
    shift: Shift,
    reason: str,
) -> Task:
    _require_status_manager(ctx)
    return _update_task(runtime, task_id, lambda task: apply_not_executed(task, shift, reason, ctx.user.name))


def reset_task(runtime: RuntimeState, ctx: SessionContext, task_id: str) -> Task:
    _require_status_manager(ctx)
    return _update_task(runtime, task_id, apply_reset)


# Import


def import_tasks(
    runtime: RuntimeState,
    ctx: SessionContext,
    content: bytes,
    filename: str,
    category_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert new rows right away and park duplicates until the user confirms."""
    _require_manager(ctx)
    active_category = category_id if category_id and category_id != ALL else None
    try:
        rows = read_spreadsheet(content, filename)
    except Exception as exc:
        logger.warning("Erro ao processar o arquivo %s", filename, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Erro ao processar o arquivo.") from exc

    with runtime.mutate() as state:
        if active_category and not any(c.id == active_category for c in state.categories):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Categoria não encontrada")
        plan = build_import_plan(rows, state.tasks, state.categories, active_category)
        state.tasks.extend(plan.to_add)

    pending_id: Optional[str] = None
    if plan.to_replace:
        pending_id = runtime.add_pending_import(plan.to_replace, ctx.user.username).id
    return {
        "import_id": pending_id,
        "added": len(plan.to_add),
        "duplicates": len(plan.to_replace),
        "warnings": plan.warnings,
    }


def confirm_import(runtime: RuntimeState, ctx: SessionContext, import_id: str, replace: bool) -> Dict[str, int]:
    """Apply or drop the whole batch of parked duplicates."""
    _require_manager(ctx)
    pending = runtime.pop_pending_import(import_id)
    if pending is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Importação não encontrada")
    if not replace:
        logger.info("Importação %s: %d duplicadas descartadas", import_id, len(pending.replacements))
        return {"replaced": 0, "dropped": len(pending.replacements)}

    with runtime.mutate() as state:
        current_ids = {task.id for task in state.tasks}
        replaced = sum(1 for task in pending.replacements if task.id in current_ids)
        state.tasks = apply_replacements(state.tasks, pending.replacements)
    return {"replaced": replaced, "dropped": len(pending.replacements) - replaced}


# Dashboard and deadlines


def execution_rate(executed: int, total: int) -> str:
    if total <= 0:
        return "0"
    return f"{executed / total * 100:.1f}"


def shift_performance(tasks: Sequence[Task]) -> List[Dict[str, Any]]:
    return [
        {
            "shift": shift,
            "executed": sum(1 for t in tasks if t.status == TaskStatus.EXECUTED and t.executed_by_shift == shift),
            "not_executed": sum(
                1 for t in tasks if t.status == TaskStatus.NOT_EXECUTED and t.executed_by_shift == shift
            ),
        }
        for shift in REPORT_SHIFTS
    ]


def dashboard_summary(tasks: Sequence[Task]) -> Dict[str, Any]:
    total = len(tasks)
    executed = sum(1 for t in tasks if t.status == TaskStatus.EXECUTED)
    not_executed = sum(1 for t in tasks if t.status == TaskStatus.NOT_EXECUTED)
    pending = sum(1 for t in tasks if t.status == TaskStatus.PENDING)
    return {
        "total": total,
        "executed": executed,
        "not_executed": not_executed,
        "pending": pending,
        "execution_rate": execution_rate(executed, total),
        "shifts": shift_performance(tasks),
    }


def days_until(date_max: str, today: dt.date) -> Optional[int]:
    if not date_max:
        return None
    try:
        deadline = dt.date.fromisoformat(date_max)
    except ValueError:
        return None
    return (deadline - today).days


def deadline_status(date_max: str, today: dt.date) -> str:
    days = days_until(date_max, today)
    if days is None:
        return "normal"
    if days < 0:
        return "expired"
    if days <= URGENT_BADGE_DAYS:
        return "urgent"
    return "normal"


def deadline_alerts(tasks: Iterable[Task], today: dt.date, window_days: Optional[int] = None) -> List[Dict[str, Any]]:
    """Pending tasks that are overdue or due within the alert window, most overdue first."""
    window = settings.alert_window_days if window_days is None else window_days
    alerts: List[Dict[str, Any]] = []
    for task in tasks:
        if task.status != TaskStatus.PENDING:
            continue
        days = days_until(task.date_max, today)
        if days is None:
            continue
        if days < 0:
            alerts.append({"type": "overdue", "task": task, "days_diff": days})
        elif days <= window:
            alerts.append({"type": "urgent", "task": task, "days_diff": days})
    alerts.sort(key=lambda item: item["days_diff"])
    return alerts
