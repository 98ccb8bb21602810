import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]

IDENTITY_FIELDS = ("phone", "username")


@dataclass
class Settings:
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "campuschat"
    store_backend: str = "mongo"
    jwt_secret: str = ""
    token_ttl_seconds: int = 7 * 24 * 3600
    identity_field: str = "phone"
    uploads_dir: str = "uploads"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    conversation_limit: int = 1000
    feed_limit: int = 50
    push_timeout_seconds: float = 5.0
    host: str = "0.0.0.0"
    port: int = 10000
    log_level: str = "INFO"

    def __post_init__(self):
        if self.identity_field not in IDENTITY_FIELDS:
            raise ValueError(f"identity_field must be one of {IDENTITY_FIELDS}, got {self.identity_field!r}")
        if self.store_backend not in ("mongo", "memory"):
            raise ValueError(f"unknown store backend {self.store_backend!r}")
        if not self.jwt_secret:
            logger.warning("JWT_SECRET not set; using a random per-process secret")
            self.jwt_secret = secrets.token_hex(32)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        env = os.environ if environ is None else environ
        origins = list(DEFAULT_ORIGINS)
        frontend = (env.get("FRONTEND_URL") or "").strip()
        if frontend:
            origins.append(frontend)
        return cls(
            mongodb_uri=env.get("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_db=env.get("MONGODB_DB", "campuschat"),
            store_backend=env.get("STORE_BACKEND", "mongo"),
            jwt_secret=env.get("JWT_SECRET", ""),
            token_ttl_seconds=int(env.get("TOKEN_TTL_SECONDS", 7 * 24 * 3600)),
            identity_field=env.get("IDENTITY_FIELD", "phone"),
            uploads_dir=env.get("UPLOADS_DIR", "uploads"),
            cors_origins=origins,
            conversation_limit=int(env.get("CONVERSATION_LIMIT", 1000)),
            feed_limit=int(env.get("FEED_LIMIT", 50)),
            push_timeout_seconds=float(env.get("PUSH_TIMEOUT_SECONDS", 5.0)),
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", 10000)),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
