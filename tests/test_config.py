from ticketgate.config import load_settings


BASE = {
    "DATABASE_URL": "sqlite:///x.db",
    "ADMIN_PASSWORD": "pw",
    "MP_ACCESS_TOKEN": "TEST-token",
    "RESEND_API_KEY": "re_key",
}


def test_complete_environment():
    s = load_settings(dict(BASE, PUBLIC_BASE_URL="https://t.example.com/"))
    assert s.ok
    assert s.payment_backend == "mercadopago"
    assert s.public_base_url == "https://t.example.com"


def test_missing_credentials_are_collected():
    s = load_settings({"ADMIN_PASSWORD": "pw"})
    assert not s.ok
    assert s.missing == ["DATABASE_URL", "MP_ACCESS_TOKEN", "RESEND_API_KEY"]


def test_local_backends_need_no_credentials():
    s = load_settings({"DATABASE_URL": "sqlite:///x.db",
                       "ADMIN_PASSWORD": "pw",
                       "PAYMENT_BACKEND": "mock",
                       "MAIL_BACKEND": "outbox"})
    assert s.ok


def test_numeric_settings():
    s = load_settings(dict(BASE, DB_POOL_SIZE="4", DB_GATE_LIMIT="8",
                           LOG_LEVEL="debug"))
    assert s.db_pool_size == 4
    assert s.db_gate_limit == 8
    assert s.db_max_overflow == 10
    assert s.log_level == "DEBUG"
