from dataclasses import dataclass
from enum import Enum
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from models import Role


class AuthStatus(str, Enum):
    loading = "loading"
    signed_out = "signed_out"
    signed_in = "signed_in"


@dataclass(frozen=True)
class Identity:
    id: str
    first_name: Optional[str] = None
    username: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin.value

    @property
    def display_name(self) -> str:
        return self.username or self.first_name or "Unknown"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus
    user: Optional[Identity] = None

    @classmethod
    def loading(cls) -> "AuthState":
        return cls(AuthStatus.loading)

    @classmethod
    def signed_out(cls) -> "AuthState":
        return cls(AuthStatus.signed_out)

    @classmethod
    def signed_in(cls, user: Identity) -> "AuthState":
        return cls(AuthStatus.signed_in, user)

    @property
    def is_signed_in(self) -> bool:
        return self.status == AuthStatus.signed_in and self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.is_signed_in and self.user.is_admin


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="identity")


def issue_identity_token(identity: Identity) -> str:
    payload = {
        "id": identity.id,
        "first_name": identity.first_name,
        "username": identity.username,
        "role": identity.role,
    }
    return _serializer().dumps(payload)


def resolve_auth_state(token: Optional[str]) -> AuthState:
    if not token:
        return AuthState.signed_out()
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.identity_max_age_secs)
    except BadSignature:
        return AuthState.signed_out()
    if not isinstance(data, dict) or not data.get("id"):
        return AuthState.signed_out()
    return AuthState.signed_in(
        Identity(
            id=str(data["id"]),
            first_name=data.get("first_name"),
            username=data.get("username"),
            role=data.get("role"),
        )
    )
