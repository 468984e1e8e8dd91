import calendar
import dataclasses
import logging
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session

from catalog import SERVICE_OPTIONS, SERVICE_PRICES
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import SessionLocal, init_db
from identity import AuthState, resolve_auth_state
from models import HistoryViewMode
from periods import WINDOWS, resolve_window, to_local
from reports import gather_report_data
from schemas import ServiceIn, ServiceOut, ThemeIn
from services import (
    DuplicateCheckTracker,
    DuplicateDetector,
    InFlightTracker,
    OperationInFlight,
    service_state,
)
from store import SQLAlchemyServiceStore, StoreError
from views import (
    AUTHORIZE_ERROR,
    DELETE_ERROR,
    NOT_FOUND,
    REVOKE_ERROR,
    SAVE_ERROR,
    AnalyticsView,
    HistoryView,
    ServicesView,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
IDENTITY_COOKIE = "identity"
THEME_COOKIE = "theme"

app = FastAPI(title="Service Ledger")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open(BASE_DIR / "pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def format_currency(value: Optional[Decimal]) -> str:
    amount = Decimal(value or 0).quantize(Decimal("0.01"))
    text = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {text}"


def month_label(key: str) -> str:
    try:
        year, month = key.split("-")
        return f"{calendar.month_name[int(month)]} {int(year)}"
    except (ValueError, IndexError):
        return key


def local_date(value) -> str:
    if value is None:
        return ""
    return to_local(value).strftime("%d/%m/%Y")


templates.env.filters["currency"] = format_currency
templates.env.filters["month_label"] = month_label
templates.env.filters["local_date"] = local_date
templates.env.globals["service_state"] = service_state
templates.env.globals["HistoryViewMode"] = HistoryViewMode
templates.env.globals["WINDOWS"] = WINDOWS
templates.env.globals["APP_VERSION"] = APP_VERSION


def static_path(path: str) -> str:
    return app.url_path_for("static", path=path)


templates.env.globals["static_path"] = static_path


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> SQLAlchemyServiceStore:
    return SQLAlchemyServiceStore(db)


def get_auth(request: Request) -> AuthState:
    return resolve_auth_state(request.cookies.get(IDENTITY_COOKIE))


duplicate_checks = DuplicateCheckTracker()
mutation_tracker = InFlightTracker()
deletion_tracker = InFlightTracker()


@app.on_event("startup")
def startup_event():
    init_db()


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    *,
    auth: Optional[AuthState] = None,
    status_code: int = 200,
) -> HTMLResponse:
    ctx: dict[str, object] = {
        "request": request,
        "theme": request.cookies.get(THEME_COOKIE, "system"),
        "auth": auth,
    }
    if auth is not None and auth.is_signed_in:
        ctx["csrf"] = generate_csrf_token(auth.user.id)
    ctx.update(context)
    return templates.TemplateResponse(
        request, template, ctx, status_code=status_code
    )


def require_signed_in(auth: AuthState) -> None:
    if not auth.is_signed_in:
        raise HTTPException(status_code=401, detail="User not authenticated")


def require_admin(auth: AuthState) -> None:
    require_signed_in(auth)
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")


def check_csrf(token: Optional[str], auth: AuthState) -> None:
    if not validate_csrf_token(token or "", auth.user.id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def history_mode_from(value: Optional[str]) -> HistoryViewMode:
    try:
        return HistoryViewMode(value or HistoryViewMode.default.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown view: {value}") from exc


def window_from(value: Optional[str]):
    try:
        return resolve_window(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def action_status(message: str) -> int:
    if message == NOT_FOUND:
        return 404
    if message in (SAVE_ERROR, AUTHORIZE_ERROR, REVOKE_ERROR, DELETE_ERROR):
        return 503
    return 400


def visible_tabs(auth: AuthState) -> list[dict[str, str]]:
    tabs = [
        {"id": "services", "label": "Services", "url": "/tabs/services"},
        {"id": "analytics", "label": "Analytics", "url": "/tabs/analytics"},
        {"id": "history", "label": "History", "url": "/tabs/history"},
    ]
    if auth.is_admin:
        tabs += [
            {
                "id": "admin-all",
                "label": "Admin: All services",
                "url": "/tabs/history?view=admin-all",
            },
            {
                "id": "admin-pending",
                "label": "Admin: Pending",
                "url": "/tabs/history?view=admin-pending",
            },
        ]
    return tabs


def history_view(
    store: SQLAlchemyServiceStore, auth: AuthState, mode: HistoryViewMode
) -> HistoryView:
    return HistoryView(
        store,
        auth,
        mode,
        mutations=mutation_tracker,
        deletions=deletion_tracker,
    )


def services_tab_context(view: ServicesView) -> dict[str, object]:
    settings = get_settings()
    return {
        "view": view,
        "form_id": uuid.uuid4().hex,
        "service_options": SERVICE_OPTIONS,
        "service_prices": SERVICE_PRICES,
        "duplicate_check_delay_ms": settings.duplicate_check_delay_ms,
    }


@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request, auth: AuthState = Depends(get_auth)):
    if not auth.is_signed_in:
        return render(request, "signed_out.html", {}, auth=auth, status_code=401)
    tabs = visible_tabs(auth)
    active = request.query_params.get("tab", "services")
    active_tab = next((t for t in tabs if t["id"] == active), tabs[0])
    return render(
        request,
        "dashboard.html",
        {"tabs": tabs, "active_tab": active_tab},
        auth=auth,
    )


@app.get("/auth/callback")
def auth_callback(token: str):
    auth = resolve_auth_state(token)
    if not auth.is_signed_in:
        raise HTTPException(status_code=401, detail="Invalid identity token")
    settings = get_settings()
    response = RedirectResponse(url="/", status_code=303)
    response.set_cookie(
        IDENTITY_COOKIE,
        token,
        max_age=settings.identity_max_age_secs,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"sign_in: user_id={auth.user.id} role={auth.user.role}")
    return response


@app.post("/logout")
def logout():
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie(IDENTITY_COOKIE)
    return response


@app.post("/theme")
def set_theme(theme: str = Form("system")):
    try:
        data = ThemeIn(theme=theme)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Unknown theme") from exc
    response = Response(status_code=204, headers={"HX-Refresh": "true"})
    response.set_cookie(THEME_COOKIE, data.theme, max_age=365 * 24 * 3600)
    return response


@app.get("/tabs/services", response_class=HTMLResponse)
def services_tab(
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    view = ServicesView(store, auth)
    view.load()
    return render(
        request, "partials/services_tab.html", services_tab_context(view), auth=auth
    )


@app.get("/components/duplicate-check", response_class=HTMLResponse)
def duplicate_check(
    request: Request,
    form_id: str,
    title: str = "",
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    require_signed_in(auth)
    seq = duplicate_checks.begin(form_id)
    try:
        duplicates = DuplicateDetector(store).find_duplicates(title)
    except StoreError:
        logger.warning(f"duplicate_check_failed: form_id={form_id}")
        return Response(status_code=204)
    if not duplicate_checks.is_latest(form_id, seq):
        return Response(status_code=204)
    return render(
        request,
        "partials/duplicate_check.html",
        {"duplicates": duplicates, "seq": seq},
        auth=auth,
    )


@app.post("/services")
async def create_service(
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    require_signed_in(auth)
    form = await request.form()
    check_csrf(form.get("csrf_token"), auth)
    service_type = str(form.get("service_type", ""))
    view = ServicesView(store, auth)
    view.load()
    created = view.create(
        service_type,
        str(form.get("title", "")),
        SERVICE_PRICES.get(service_type),
        admin_override=form.get("admin_override") == "on",
    )
    if created is None:
        message = view.action_error or next(iter(view.field_errors.values()))
        raise HTTPException(status_code=action_status(message), detail=message)
    if request.headers.get("HX-Request"):
        return render(
            request,
            "partials/services_tab.html",
            services_tab_context(view),
            auth=auth,
        )
    return RedirectResponse(url="/?tab=services", status_code=303)


@app.get("/tabs/history", response_class=HTMLResponse)
def history_tab(
    request: Request,
    view: Optional[str] = None,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    mode = history_mode_from(view)
    if mode != HistoryViewMode.default:
        require_admin(auth)
    history = history_view(store, auth, mode)
    history.load()
    return render(request, "partials/history_tab.html", {"view": history}, auth=auth)


async def _history_action(
    request: Request,
    service_id: str,
    action: str,
    auth: AuthState,
    store: SQLAlchemyServiceStore,
):
    require_admin(auth)
    form = await request.form()
    check_csrf(form.get("csrf_token"), auth)
    mode = history_mode_from(form.get("view"))
    history = history_view(store, auth, mode)
    history.load()
    try:
        getattr(history, action)(service_id)
    except OperationInFlight as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if history.action_error:
        raise HTTPException(
            status_code=action_status(history.action_error),
            detail=history.action_error,
        )
    if request.headers.get("HX-Request"):
        return render(
            request,
            "partials/history_tab.html",
            {"view": history},
            auth=auth,
        )
    tab = "history" if mode == HistoryViewMode.default else mode.value
    return RedirectResponse(url=f"/?tab={tab}", status_code=303)


@app.post("/services/{service_id}/authorize")
async def authorize_service(
    service_id: str,
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    return await _history_action(request, service_id, "authorize", auth, store)


@app.post("/services/{service_id}/revoke")
async def revoke_service(
    service_id: str,
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    return await _history_action(request, service_id, "revoke", auth, store)


@app.post("/services/{service_id}/delete")
async def delete_service(
    service_id: str,
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    return await _history_action(request, service_id, "delete", auth, store)


@app.get("/tabs/analytics", response_class=HTMLResponse)
def analytics_tab(
    request: Request,
    window: Optional[str] = None,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    view = AnalyticsView(store, auth, window_from(window))
    view.load()
    return render(request, "partials/analytics_tab.html", {"view": view}, auth=auth)


@app.get("/reports/analytics", response_class=HTMLResponse)
def analytics_report(
    request: Request,
    window: Optional[str] = None,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    require_signed_in(auth)
    view = AnalyticsView(store, auth, window_from(window))
    view.load()
    if view.error:
        raise HTTPException(status_code=503, detail=view.error)
    data = gather_report_data(view.summary, auth)
    logger.info(f"report_generated: user_id={auth.user.id} window={view.window.slug}")
    return render(request, "report.html", data, auth=auth)


@app.get("/api/services")
def api_services(
    view: Optional[str] = None,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    mode = history_mode_from(view)
    if mode == HistoryViewMode.default:
        require_signed_in(auth)
    else:
        require_admin(auth)
    history = history_view(store, auth, mode)
    history.load()
    if history.error:
        raise HTTPException(status_code=503, detail=history.error)
    return {
        "services": jsonable_encoder(history.records),
        "months": [
            {
                "month": group.month,
                "service_count": len(group.services),
                "total": group.total,
                "pending_total": group.pending_total,
            }
            for group in history.groups
        ],
    }


@app.post("/api/services", status_code=201)
def api_create_service(
    payload: ServiceIn,
    request: Request,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
) -> ServiceOut:
    require_signed_in(auth)
    check_csrf(request.headers.get("X-CSRF-Token"), auth)
    view = ServicesView(store, auth)
    created = view.create(
        payload.service_type, payload.title, payload.price, payload.admin_override
    )
    if created is None:
        if view.action_error:
            raise HTTPException(
                status_code=action_status(view.action_error), detail=view.action_error
            )
        field, message = next(iter(view.field_errors.items()))
        raise HTTPException(status_code=400, detail={"field": field, "message": message})
    return created


@app.get("/api/analytics")
def api_analytics(
    window: Optional[str] = None,
    auth: AuthState = Depends(get_auth),
    store: SQLAlchemyServiceStore = Depends(get_store),
):
    require_signed_in(auth)
    view = AnalyticsView(store, auth, window_from(window))
    view.load()
    if view.error:
        raise HTTPException(status_code=503, detail=view.error)
    return JSONResponse(jsonable_encoder(dataclasses.asdict(view.summary)))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
