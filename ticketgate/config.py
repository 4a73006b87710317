import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


# ----------------------------
# Config & Constants
# ----------------------------
TICKET_PRICES = {"pista": 100.0, "vip": 150.0}  # BRL
CURRENCY = "BRL"


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    mp_access_token: Optional[str]
    resend_api_key: Optional[str]
    admin_password: Optional[str]

    payment_backend: str = "mercadopago"  # 'mercadopago' | 'mock'
    mail_backend: str = "resend"          # 'resend' | 'outbox'
    session_secret: str = "dev-secret-change-me"
    public_base_url: str = "http://localhost:8000"
    mail_from: str = "confirmacao@pay.resenhamusic.com.br"
    event_name: str = "Resenha Music"
    redis_url: str = "redis://127.0.0.1:6379"
    redis_max_conn: int = 64
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: Optional[int] = None
    log_level: str = "INFO"

    missing: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if not raw:
        return default
    return int(raw)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Read settings from the environment.

    Missing credentials are collected into ``Settings.missing`` instead of
    raising, so the server can start and answer every request with a
    "misconfigured" error.
    """
    env = os.environ if env is None else env

    payment_backend = env.get("PAYMENT_BACKEND", "mercadopago").lower()
    mail_backend = env.get("MAIL_BACKEND", "resend").lower()

    required = ["DATABASE_URL", "ADMIN_PASSWORD"]
    if payment_backend != "mock":
        required.append("MP_ACCESS_TOKEN")
    if mail_backend != "outbox":
        required.append("RESEND_API_KEY")
    missing = [key for key in required if not env.get(key)]

    gate = env.get("DB_GATE_LIMIT")
    return Settings(
        database_url=env.get("DATABASE_URL"),
        mp_access_token=env.get("MP_ACCESS_TOKEN"),
        resend_api_key=env.get("RESEND_API_KEY"),
        admin_password=env.get("ADMIN_PASSWORD"),
        payment_backend=payment_backend,
        mail_backend=mail_backend,
        session_secret=env.get("SESSION_SECRET", "dev-secret-change-me"),
        public_base_url=env.get(
            "PUBLIC_BASE_URL", "http://localhost:8000"
        ).rstrip("/"),
        mail_from=env.get(
            "MAIL_FROM", "confirmacao@pay.resenhamusic.com.br"
        ),
        event_name=env.get("EVENT_NAME", "Resenha Music"),
        redis_url=env.get("REDIS_URL", "redis://127.0.0.1:6379"),
        redis_max_conn=_int(env, "REDIS_MAX_CONN", 64),
        db_pool_size=_int(env, "DB_POOL_SIZE", 10),
        db_max_overflow=_int(env, "DB_MAX_OVERFLOW", 10),
        db_pool_timeout=_int(env, "DB_POOL_TIMEOUT", 30),
        db_gate_limit=int(gate) if gate else None,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        missing=missing,
    )
