from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional, Union

from catalog import is_known_type
from identity import AuthState
from models import ServiceState
from periods import is_current_month
from schemas import ServiceCreate, ServiceOut
from store import ServiceFilter, ServiceStore


logger = logging.getLogger(__name__)


class ServiceValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NotAuthenticated(PermissionError):
    pass


class DeletionNotAllowed(ValueError):
    pass


class OperationInFlight(RuntimeError):
    pass


def service_state(record) -> ServiceState:
    if getattr(record, "include_in_total", True) is False:
        return ServiceState.pending
    if getattr(record, "admin_override", False):
        return ServiceState.authorized_override
    return ServiceState.authorized_plain


class DuplicateDetector:
    def __init__(self, store: ServiceStore) -> None:
        self.store = store

    def find_duplicates(self, title: Optional[str]) -> list[ServiceOut]:
        clean_title = (title or "").strip()
        if not clean_title:
            return []
        return self.store.list(ServiceFilter(title=clean_title))


class DuplicateCheckTracker:
    """Sequence-stamps duplicate checks per creation form.

    A check that finishes after a newer one for the same form was started is
    stale and must not be shown.
    """

    def __init__(self, max_forms: int = 1024) -> None:
        self.max_forms = max_forms
        self._latest: OrderedDict[str, int] = OrderedDict()
        self._lock = threading.Lock()

    def begin(self, form_id: str) -> int:
        with self._lock:
            seq = self._latest.pop(form_id, 0) + 1
            self._latest[form_id] = seq
            while len(self._latest) > self.max_forms:
                self._latest.popitem(last=False)
            return seq

    def is_latest(self, form_id: str, seq: int) -> bool:
        with self._lock:
            return self._latest.get(form_id) == seq


class InFlightTracker:
    def __init__(self) -> None:
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def is_in_flight(self, service_id: str) -> bool:
        with self._lock:
            return service_id in self._ids

    @contextmanager
    def claim(self, service_id: str) -> Iterator[None]:
        with self._lock:
            if service_id in self._ids:
                raise OperationInFlight(
                    f"Another operation on service {service_id} is in progress"
                )
            self._ids.add(service_id)
        try:
            yield
        finally:
            with self._lock:
                self._ids.discard(service_id)


class ServiceCreationService:
    def __init__(self, store: ServiceStore, auth: AuthState) -> None:
        self.store = store
        self.auth = auth

    @staticmethod
    def _validate(
        service_type: str, title: Optional[str], price: Union[Decimal, int, str, None]
    ) -> tuple[str, Decimal]:
        clean_title = (title or "").strip()
        if not clean_title:
            raise ServiceValidationError("title", "A number/code is required")
        if not is_known_type(service_type):
            raise ServiceValidationError(
                "service_type", f"Unknown service type: {service_type}"
            )
        try:
            amount = price if isinstance(price, Decimal) else Decimal(str(price))
        except (InvalidOperation, ValueError) as exc:
            raise ServiceValidationError("price", "Price must be a number") from exc
        if not amount.is_finite() or amount < 0:
            raise ServiceValidationError(
                "price", "Price must be greater than or equal to zero"
            )
        return clean_title, amount

    def create(
        self,
        service_type: str,
        title: Optional[str],
        price: Union[Decimal, int, str, None],
        admin_override: bool = False,
    ) -> ServiceOut:
        if not self.auth.is_signed_in:
            raise NotAuthenticated("User not authenticated")
        user = self.auth.user
        clean_title, amount = self._validate(service_type, title, price)

        existing = self.store.list(ServiceFilter(title=clean_title))
        is_duplicate = len(existing) > 0

        effective_override = bool(admin_override) and user.is_admin
        if admin_override and not user.is_admin:
            logger.warning(
                f"service_create: ignoring admin_override from non-admin user_id={user.id}"
            )

        created = self.store.insert(
            ServiceCreate(
                title=clean_title,
                service_type=service_type,
                price=amount,
                user_id=user.id,
                username=user.display_name,
                include_in_total=not is_duplicate or effective_override,
                admin_override=effective_override,
            )
        )
        logger.info(
            f"service_create: id={created.id} title={created.title} "
            f"duplicate={is_duplicate} include_in_total={created.include_in_total}"
        )
        return created


class AuthorizationService:
    """Admin-only transitions on a record's inclusion flags.

    Non-admin calls return False without touching the store. Store failures
    propagate as ``StoreError`` so callers can leave their state unchanged.
    """

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

    def _denied(self, action: str, service_id: str) -> bool:
        if self.auth.is_admin:
            return False
        logger.info(f"service_{action}: refused for non-admin id={service_id}")
        return True

    def authorize(self, service_id: str) -> bool:
        if self._denied("authorize", service_id):
            return False
        self.store.update(service_id, include_in_total=True, admin_override=True)
        logger.info(f"service_authorize: id={service_id} by={self.auth.user.id}")
        return True

    def revoke(self, service_id: str) -> bool:
        if self._denied("revoke", service_id):
            return False
        self.store.update(service_id, include_in_total=False, admin_override=False)
        logger.info(f"service_revoke: id={service_id} by={self.auth.user.id}")
        return True

    def can_delete(self, record) -> bool:
        return self.auth.is_admin and is_current_month(
            getattr(record, "created_at", None), now=self.now, tz=self.tz
        )

    def delete(self, record) -> bool:
        if self._denied("delete", record.id):
            return False
        if not is_current_month(record.created_at, now=self.now, tz=self.tz):
            raise DeletionNotAllowed(
                "Only services created in the current month can be deleted"
            )
        self.store.delete(record.id)
        logger.info(f"service_delete: id={record.id} by={self.auth.user.id}")
        return True
