from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://taskboard:taskboard@db:5432/taskboard"
  sql_echo: bool = False
  app_env: str = "development"  # development | production
  app_version: str = "0.1.0"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cookie_secure: bool = False
  cookie_domain: str | None = None
  session_ttl_days: int = 14
  password_hash_rounds: int = 12

  # token buckets, keyed by client ip
  rate_limit_rps: float = 10.0
  rate_limit_burst: int = 20
  rate_limit_auth_rps: float = 5.0
  rate_limit_auth_burst: int = 10

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api"

  presence_timeout_minutes: int = 5

  seed_admin_email: str = "admin@taskboard.local"
  seed_admin_username: str = "admin"
  seed_admin_password: str | None = None

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def is_production(self) -> bool:
    return self.app_env.strip().lower() in ("production", "release")


settings = Settings()
