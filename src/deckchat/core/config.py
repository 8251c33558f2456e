from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator
from typing import Optional

class Settings(BaseSettings):
    # App/Env
    ENV: str = "dev"
    APP_NAME: str = "deckchat"
    PORT: int = 8080
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Redis (session store)
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_MAX_CONNS: int = 50
    REDIS_SOCKET_TIMEOUT: float = 5.0
    REDIS_CONNECT_TIMEOUT: float = 5.0

    # Execution environments
    SANDBOX_PROVIDER: str = "http"  # "http" | "local"
    SANDBOX_API_URL: str = "http://sandbox:8787"
    SANDBOX_API_TOKEN: Optional[str] = None
    SANDBOX_VCPUS: int = 2
    SANDBOX_TIMEOUT_SEC: int = 900  # idle timeout, 15m
    SANDBOX_RUNTIME: str = "node22"
    SANDBOX_LOCAL_ROOT: str = "./var/sandboxes"

    # Leases (seconds); the stored pointers must not outlive the environment
    ENV_HANDLE_TTL_SEC: int = 840
    CONTINUATION_TTL_SEC: int = 840
    TRANSCRIPT_TTL_SEC: int = 3600
    TRANSCRIPT_MAX_LEN: int = 50

    # Agent CLI
    AGENT_BINARY: str = "cursor-agent"
    AGENT_INSTALL_CMD: str = "curl https://cursor.com/install -fsSL | bash"
    AGENT_API_KEY: Optional[str] = None
    AGENT_API_KEY_ENV: str = "CURSOR_API_KEY"
    AGENT_BIN_DIR: str = "$HOME/.local/bin"

    # "resume" (agent keeps its own memory) | "transcript" (replay history)
    CONTINUITY_MODE: str = "resume"

    # Documents
    RULES_PATH: str = "public/RULES.md"
    SAMPLE_PATH: str = "public/sample.md"
    DOCUMENT_FILENAME: str = "presentation.md"
    INDENT_WIDTH: int = 4

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _check_leases(self) -> "Settings":
        if self.ENV_HANDLE_TTL_SEC >= self.SANDBOX_TIMEOUT_SEC:
            raise ValueError("ENV_HANDLE_TTL_SEC must be lower than SANDBOX_TIMEOUT_SEC")
        if self.CONTINUATION_TTL_SEC > self.SANDBOX_TIMEOUT_SEC:
            raise ValueError("CONTINUATION_TTL_SEC must not exceed SANDBOX_TIMEOUT_SEC")
        if self.CONTINUITY_MODE not in {"resume", "transcript"}:
            raise ValueError(f"unknown CONTINUITY_MODE {self.CONTINUITY_MODE!r}")
        if self.SANDBOX_PROVIDER not in {"http", "local"}:
            raise ValueError(f"unknown SANDBOX_PROVIDER {self.SANDBOX_PROVIDER!r}")
        return self

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
