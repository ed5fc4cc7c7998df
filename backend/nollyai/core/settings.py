import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./nollyai.db") or "sqlite:///./nollyai.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("VITE_SUPABASE_URL")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:5173") or "http://localhost:5173"
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        self.llm_api_key = _getenv("LLM_API_KEY") or _getenv("OPENAI_API_KEY")
        self.llm_base_url = _getenv("LLM_BASE_URL")
        self.llm_model = _getenv("LLM_MODEL", "gpt-4o-mini") or "gpt-4o-mini"
        self.llm_temperature = _getenv_float("LLM_TEMPERATURE", 0.2)
        self.llm_concurrency = _getenv_int("LLM_CONCURRENCY", 8)
        self.llm_max_retries = _getenv_int("LLM_MAX_RETRIES", 3)
        self.llm_retry_base_s = _getenv_float("LLM_RETRY_BASE_S", 0.7)

        self.replicate_api_key = _getenv("REPLICATE_API_KEY") or _getenv("REPLICATE_API_TOKEN")
        self.replicate_base_url = (
            _getenv("REPLICATE_BASE_URL", "https://api.replicate.com/v1") or "https://api.replicate.com/v1"
        )

        self.paystack_secret_key = _getenv("PAYSTACK_SECRET_KEY")

        self.daily_free_tokens = _getenv_int("DAILY_FREE_TOKENS", 10)
        self.free_claim_cooldown_hours = _getenv_int("FREE_CLAIM_COOLDOWN_HOURS", 24)
        self.credits_signup_grant = _getenv_int("CREDITS_SIGNUP_GRANT", 0)

        self.job_batch_size = max(1, _getenv_int("JOB_BATCH_SIZE", 5))
        self.job_short_timeout_s = _getenv_float("JOB_SHORT_TIMEOUT_S", 60.0)
        self.job_long_timeout_s = _getenv_float("JOB_LONG_TIMEOUT_S", 600.0)
        self.job_poll_interval_s = _getenv_float("JOB_POLL_INTERVAL_S", 5.0)
        self.job_poll_deadline_s = _getenv_float("JOB_POLL_DEADLINE_S", 600.0)
        self.job_process_on_submit = _getenv_bool("JOB_PROCESS_ON_SUBMIT", default=True)
        self.job_worker_enabled = _getenv_bool("JOB_WORKER_ENABLED", default=False)
        self.job_worker_idle_sleep_s = _getenv_float("JOB_WORKER_IDLE_SLEEP_S", 5.0)
        self.job_worker_token = _getenv("JOB_WORKER_TOKEN")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8080"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
