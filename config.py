"""
Configuração central do BizFlow, lida das variáveis de ambiente
"""
import os


def get_environment():
    """ENVIRONMENT tem prioridade; NODE_ENV é aceito por compatibilidade com deploys antigos"""
    return os.environ.get("ENVIRONMENT") or os.environ.get("NODE_ENV") or "development"


def is_production():
    return get_environment() == "production"


def normalize_database_url(url):
    # Render e Heroku ainda entregam o esquema antigo
    if url and url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def engine_options(url):
    """Opções do pool compartilhadas entre a API e os scripts de migração"""
    options = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }
    if url and url.startswith("postgresql") and is_production():
        # Criptografa sem validar a cadeia do certificado (equivale a rejectUnauthorized: false)
        options["connect_args"] = {"sslmode": "require"}
    return options


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SESSION_SECRET")

    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.environ.get("DATABASE_URL", "sqlite:///bizflow.sqlite3")
    )
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    ENVIRONMENT = get_environment()
    APP_VERSION = "5.1.0"
    PORT = int(os.environ.get("PORT", 10000))

    DEFAULT_TENANT_ID = int(os.environ.get("DEFAULT_TENANT_ID", 1))
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", 24))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", 5))

    # ignore | propagate
    SEED_FAILURE_POLICY = os.environ.get("SEED_FAILURE_POLICY", "ignore")

    DEBUG_ENDPOINTS_ENABLED = _env_flag("DEBUG_ENDPOINTS_ENABLED", not is_production())

    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", True)
    RATELIMIT_STORAGE_URI = "memory://"
    LOGIN_RATE_LIMIT = os.environ.get("LOGIN_RATE_LIMIT", "10 per minute")

    SESSION_COOKIE_SECURE = is_production()
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
