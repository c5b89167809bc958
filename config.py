from pydantic import PrivateAttr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Loan Evidence Pipeline"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3005

    database_url: str = "sqlite+aiosqlite:///./loan_evidence.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Verification oracle
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    verification_timeout_seconds: float = 300.0

    # Evidence policy
    bundle_size: int = 3
    max_photo_age_minutes: float = 15.0
    geofence_radius_meters: float = 200.0
    bill_requires_gps: bool = False
    storage_uri_scheme: str = "gs"
    # Where the oracle downloads gs:// evidence from (public or proxied bucket access)
    storage_download_base_url: str = "https://storage.googleapis.com"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    _is_sqlite: bool = PrivateAttr(default=False)
    _is_memory: bool = PrivateAttr(default=False)

    def model_post_init(self, __context: object) -> None:
        _scheme = self.database_url.split(":")[0].lower()
        object.__setattr__(self, "_is_sqlite", "sqlite" in _scheme)
        object.__setattr__(self, "_is_memory", ":memory:" in self.database_url)

    @property
    def is_sqlite(self) -> bool:
        return self._is_sqlite

    @property
    def is_memory(self) -> bool:
        return self._is_memory


settings = Settings()
