import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def _sweep_serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.sweep_secret, salt="budget-sweep")


def generate_csrf_token(user_id: int = 1, max_age_hours: int = 2) -> str:
    timestamp = int(time.time())
    token_data = {"u": user_id, "ts": timestamp, "exp": timestamp + max_age_hours * 3600}
    return _serializer().dumps(token_data)


def validate_csrf_token(token: str, user_id: int = 1) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False
    if data.get("u") != user_id:
        return False
    return int(time.time()) <= data.get("exp", 0)


def generate_sweep_token(issuer: str = "cron") -> str:
    """Token for the out-of-process trigger of the all-users sweep."""
    return _sweep_serializer().dumps({"scope": "sweep_all", "iss": issuer})


def validate_sweep_token(token: str) -> bool:
    if not token:
        return False
    try:
        data = _sweep_serializer().loads(token)
    except BadSignature:
        return False
    return data.get("scope") == "sweep_all"
