from __future__ import annotations

from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import reports, services
from .config import settings
from .schemas import (
    AlertResponse,
    Category,
    CategoryCreateRequest,
    DashboardResponse,
    ExecuteRequest,
    ImportConfirmRequest,
    ImportConfirmResponse,
    ImportResponse,
    LoginRequest,
    LoginResponse,
    NotExecutedRequest,
    Task,
    TaskCreateRequest,
    TaskTab,
    UserCreateRequest,
    UserResponse,
)
from .sessions import SessionContext, SessionRegistry
from .state import RuntimeState
from .storage import StateStore, build_store

bearer_scheme = HTTPBearer(auto_error=False)


def get_runtime(request: Request) -> RuntimeState:
    return request.app.state.runtime_state


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def current_session(
    runtime: RuntimeState = Depends(get_runtime),
    sessions: SessionRegistry = Depends(get_sessions),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionContext:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão não iniciada")
    ctx = sessions.resolve(runtime.snapshot(), credentials.credentials)
    if ctx is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão inválida ou expirada")
    return ctx


def create_app(store: Optional[StateStore] = None) -> FastAPI:
    app = FastAPI(title=settings.app_name)
    app.state.runtime_state = RuntimeState(store or build_store(settings))
    app.state.sessions = SessionRegistry()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/auth/login", response_model=LoginResponse)
    def login(
        payload: LoginRequest,
        runtime: RuntimeState = Depends(get_runtime),
        sessions: SessionRegistry = Depends(get_sessions),
    ) -> LoginResponse:
        ctx = sessions.login(runtime.snapshot(), payload.username, payload.password)
        return LoginResponse(token=ctx.token, user=UserResponse.model_validate(ctx.user.model_dump()))

    @app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    def logout(
        ctx: SessionContext = Depends(current_session),
        sessions: SessionRegistry = Depends(get_sessions),
    ) -> Response:
        sessions.logout(ctx.token)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/auth/me", response_model=UserResponse)
    def me(ctx: SessionContext = Depends(current_session)) -> UserResponse:
        return ctx.user

    @app.get("/users", response_model=List[UserResponse])
    def list_users(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> List[UserResponse]:
        services.require_reports_access(ctx)
        return runtime.snapshot().users

    @app.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    def create_user(
        payload: UserCreateRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> UserResponse:
        return services.create_user(
            runtime, ctx, payload.name, payload.username, payload.password, payload.role, payload.shift
        )

    @app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_user(
        user_id: str,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
        sessions: SessionRegistry = Depends(get_sessions),
    ) -> Response:
        services.delete_user(runtime, ctx, user_id)
        sessions.drop_user(user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/categories", response_model=List[Category])
    def list_categories(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> List[Category]:
        return runtime.snapshot().categories

    @app.post("/categories", response_model=Category, status_code=status.HTTP_201_CREATED)
    def create_category(
        payload: CategoryCreateRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Category:
        return services.create_category(runtime, ctx, payload.name)

    @app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_category(
        category_id: str,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Response:
        services.delete_category(runtime, ctx, category_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/tasks", response_model=List[Task])
    def list_tasks(
        category_id: Optional[str] = None,
        work_center: Optional[str] = None,
        q: Optional[str] = None,
        tab: Optional[TaskTab] = None,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> List[Task]:
        return services.filter_tasks(runtime.snapshot().tasks, category_id, work_center, q, tab)

    @app.get("/tasks/work-centers", response_model=List[str])
    def work_centers(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> List[str]:
        return services.list_work_centers(runtime.snapshot().tasks)

    @app.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
    def create_task(
        payload: TaskCreateRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Task:
        return services.create_task(
            runtime,
            ctx,
            payload.om_number,
            payload.description,
            payload.category_id,
            payload.work_center,
            payload.date_min,
            payload.date_max,
        )

    @app.delete("/tasks", status_code=status.HTTP_204_NO_CONTENT)
    def clear_tasks(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Response:
        services.clear_tasks(runtime, ctx)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/tasks/{task_id}", response_model=Task)
    def read_task(
        task_id: str,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Task:
        return services.get_task(runtime, task_id)

    @app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_task(
        task_id: str,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Response:
        services.delete_task(runtime, ctx, task_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/tasks/{task_id}/execute", response_model=Task)
    def execute_task(
        task_id: str,
        payload: ExecuteRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Task:
        return services.mark_executed(runtime, ctx, task_id, payload.shift)

    @app.post("/tasks/{task_id}/not-executed", response_model=Task)
    def not_executed_task(
        task_id: str,
        payload: NotExecutedRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Task:
        return services.mark_not_executed(runtime, ctx, task_id, payload.shift, payload.reason)

    @app.post("/tasks/{task_id}/reset", response_model=Task)
    def reset_task(
        task_id: str,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Task:
        return services.reset_task(runtime, ctx, task_id)

    @app.post("/imports", response_model=ImportResponse)
    async def upload_import(
        file: UploadFile = File(...),
        category_id: Optional[str] = Form(None),
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> ImportResponse:
        content = await file.read()
        result = services.import_tasks(runtime, ctx, content, file.filename or "upload", category_id)
        return ImportResponse(**result)

    @app.post("/imports/{import_id}/confirm", response_model=ImportConfirmResponse)
    def confirm_import(
        import_id: str,
        payload: ImportConfirmRequest,
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> ImportConfirmResponse:
        return ImportConfirmResponse(**services.confirm_import(runtime, ctx, import_id, payload.replace))

    @app.get("/dashboard", response_model=DashboardResponse)
    def dashboard(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> DashboardResponse:
        services.require_reports_access(ctx)
        return DashboardResponse(**services.dashboard_summary(runtime.snapshot().tasks))

    @app.get("/alerts", response_model=List[AlertResponse])
    def alerts(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> List[AlertResponse]:
        items = services.deadline_alerts(runtime.snapshot().tasks, services.local_today())
        return [AlertResponse(**item) for item in items]

    @app.get("/reports/csv")
    def report_csv(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Response:
        services.require_reports_access(ctx)
        filename, content = reports.build_csv(runtime.snapshot().tasks, services.local_today())
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        return Response(content, media_type="text/csv; charset=utf-8", headers=headers)

    @app.get("/reports/pdf")
    def report_pdf(
        ctx: SessionContext = Depends(current_session),
        runtime: RuntimeState = Depends(get_runtime),
    ) -> Response:
        services.require_reports_access(ctx)
        snapshot = runtime.snapshot()
        filename, content = reports.build_pdf(snapshot.tasks, services.local_today(), snapshot.categories)
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        return Response(content, media_type="application/pdf", headers=headers)


app = create_app()
