from __future__ import annotations

from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Optional, Union

from analytics import AnalyticsSummary, MonthGroup, build_summary, group_by_month
from identity import AuthState, AuthStatus
from models import HistoryViewMode
from periods import AnalyticsWindow, current_month_key
from schemas import ServiceOut
from services import (
    AuthorizationService,
    DeletionNotAllowed,
    InFlightTracker,
    NotAuthenticated,
    ServiceCreationService,
    ServiceValidationError,
)
from store import RecordNotFound, ServiceFilter, ServiceStore, StoreError


USER_NOT_AUTHENTICATED = "User not authenticated"
ADMIN_REQUIRED = "Administrator access required"
LOAD_ERROR = "Could not load services"
SAVE_ERROR = "Could not save service"
AUTHORIZE_ERROR = "Could not authorize service"
REVOKE_ERROR = "Could not revoke authorization"
DELETE_ERROR = "Could not delete service"
NOT_FOUND = "Service not found"


def apply_insert(records: list[ServiceOut], record: ServiceOut) -> list[ServiceOut]:
    return [*records, record]


def apply_flags(
    records: list[ServiceOut], service_id: str, **flags: bool
) -> list[ServiceOut]:
    return [
        r.model_copy(update=flags) if r.id == service_id else r for r in records
    ]


def apply_delete(records: list[ServiceOut], service_id: str) -> list[ServiceOut]:
    return [r for r in records if r.id != service_id]


class TabView:
    def __init__(
        self,
        store: ServiceStore,
        auth: AuthState,
        *,
        tz: Optional[tzinfo] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.store = store
        self.auth = auth
        self.tz = tz
        self.now = now
        self.records: list[ServiceOut] = []
        self.loading = False
        self.error: Optional[str] = None
        self.action_error: Optional[str] = None

    def filters(self) -> ServiceFilter:
        return ServiceFilter(user_id=self.auth.user.id)

    def can_load(self) -> bool:
        if self.auth.status == AuthStatus.loading:
            self.loading = True
            return False
        if not self.auth.is_signed_in:
            self.error = USER_NOT_AUTHENTICATED
            return False
        return True

    def load(self) -> None:
        if not self.can_load():
            return
        self.loading = True
        self.error = None
        try:
            self.records = self.store.list(self.filters())
        except StoreError:
            self.error = LOAD_ERROR
        finally:
            self.loading = False
        self.refresh_derived()

    def refresh_derived(self) -> None:
        pass

    def find(self, service_id: str) -> Optional[ServiceOut]:
        for record in self.records:
            if record.id == service_id:
                return record
        return None


class ServicesView(TabView):
    """The user's own services, grouped by month with authorized totals."""

    def __init__(self, store: ServiceStore, auth: AuthState, **kwargs) -> None:
        super().__init__(store, auth, **kwargs)
        self.groups: list[MonthGroup] = []
        self.field_errors: dict[str, str] = {}

    def refresh_derived(self) -> None:
        self.groups = group_by_month(self.records, self.tz)

    def create(
        self,
        service_type: str,
        title: Optional[str],
        price: Union[Decimal, int, str, None],
        admin_override: bool = False,
    ) -> Optional[ServiceOut]:
        self.action_error = None
        self.field_errors = {}
        service = ServiceCreationService(self.store, self.auth)
        try:
            created = service.create(service_type, title, price, admin_override)
        except ServiceValidationError as exc:
            self.field_errors[exc.field] = exc.message
            return None
        except NotAuthenticated:
            self.action_error = USER_NOT_AUTHENTICATED
            return None
        except StoreError:
            self.action_error = SAVE_ERROR
            return None
        self.records = apply_insert(self.records, created)
        self.refresh_derived()
        return created


class HistoryView(TabView):
    def __init__(
        self,
        store: ServiceStore,
        auth: AuthState,
        view_mode: HistoryViewMode = HistoryViewMode.default,
        *,
        mutations: Optional[InFlightTracker] = None,
        deletions: Optional[InFlightTracker] = None,
        **kwargs,
    ) -> None:
        super().__init__(store, auth, **kwargs)
        self.view_mode = view_mode
        self.mutations = mutations or InFlightTracker()
        self.deletions = deletions or InFlightTracker()
        self.groups: list[MonthGroup] = []

    @property
    def title(self) -> str:
        if self.view_mode == HistoryViewMode.admin_all:
            return "All services (Admin)"
        if self.view_mode == HistoryViewMode.admin_pending:
            return "Services pending authorization (Admin)"
        return "Service history"

    def filters(self) -> ServiceFilter:
        if self.view_mode == HistoryViewMode.admin_pending:
            return ServiceFilter(include_in_total=False)
        if self.view_mode == HistoryViewMode.admin_all:
            return ServiceFilter()
        return ServiceFilter(user_id=self.auth.user.id)

    def can_load(self) -> bool:
        if not super().can_load():
            return False
        if self.view_mode != HistoryViewMode.default and not self.auth.is_admin:
            self.error = ADMIN_REQUIRED
            return False
        return True

    def refresh_derived(self) -> None:
        self.groups = group_by_month(self.records, self.tz)

    @property
    def show_actions(self) -> bool:
        return self.auth.is_admin and self.view_mode != HistoryViewMode.default

    @property
    def current_month(self) -> str:
        return current_month_key(self.now, self.tz)

    def is_busy(self, service_id: str) -> bool:
        return self.mutations.is_in_flight(service_id) or self.deletions.is_in_flight(
            service_id
        )

    def can_delete(self, record: ServiceOut) -> bool:
        return self._authorization().can_delete(record)

    def _authorization(self) -> AuthorizationService:
        return AuthorizationService(self.store, self.auth, tz=self.tz, now=self.now)

    def _set_flags(self, service_id: str, include: bool, failure_message: str) -> bool:
        self.action_error = None
        service = self._authorization()
        with self.mutations.claim(service_id):
            try:
                if include:
                    applied = service.authorize(service_id)
                else:
                    applied = service.revoke(service_id)
            except RecordNotFound:
                self.action_error = NOT_FOUND
                return False
            except StoreError:
                self.action_error = failure_message
                return False
        if applied:
            self.records = apply_flags(
                self.records,
                service_id,
                include_in_total=include,
                admin_override=include,
            )
            self.refresh_derived()
        return applied

    def authorize(self, service_id: str) -> bool:
        return self._set_flags(service_id, True, AUTHORIZE_ERROR)

    def revoke(self, service_id: str) -> bool:
        return self._set_flags(service_id, False, REVOKE_ERROR)

    def delete(self, service_id: str) -> bool:
        self.action_error = None
        record = self.find(service_id)
        if record is None:
            self.action_error = NOT_FOUND
            return False
        service = self._authorization()
        with self.deletions.claim(service_id):
            try:
                applied = service.delete(record)
            except DeletionNotAllowed as exc:
                self.action_error = str(exc)
                return False
            except RecordNotFound:
                self.action_error = NOT_FOUND
                return False
            except StoreError:
                self.action_error = DELETE_ERROR
                return False
        if applied:
            self.records = apply_delete(self.records, service_id)
            self.refresh_derived()
        return applied


class AnalyticsView(TabView):
    def __init__(
        self, store: ServiceStore, auth: AuthState, window: AnalyticsWindow, **kwargs
    ) -> None:
        super().__init__(store, auth, **kwargs)
        self.window = window
        self.summary: Optional[AnalyticsSummary] = None

    def filters(self) -> ServiceFilter:
        if self.auth.is_admin:
            return ServiceFilter()
        return ServiceFilter(user_id=self.auth.user.id)

    def refresh_derived(self) -> None:
        self.summary = build_summary(
            self.records,
            self.window,
            include_users=self.auth.is_admin,
            now=self.now,
            tz=self.tz,
        )
