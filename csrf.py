from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


CSRF_MAX_AGE_SECS = 2 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(user_id: str) -> str:
    return _serializer().dumps({"u": user_id})


def validate_csrf_token(
    token: str, user_id: str, max_age_secs: int = CSRF_MAX_AGE_SECS
) -> bool:
    """True when the token was issued for ``user_id`` within ``max_age_secs``.

    Expired tokens raise ``SignatureExpired``, a ``BadSignature`` subclass.
    """
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("u") == user_id
