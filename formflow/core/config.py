## formflow/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the application
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    allowed_cors_urls: str = "*"
    app_name: str = "FormFlow Submission Engine"

    # Primary store. When unset the MySQL parts below are used.
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_user: str = "formflow"
    db_password: str = ""
    db_database: str = "formflow"
    db_port: int = 3306

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None
    redis_cache_db: int = 0

    # Multi-tier cache
    cache_enabled: bool = True
    cache_l1_enabled: bool = True
    cache_default_ttl: int = 3600

    # Autentique integration
    autentique_api_key: Optional[str] = None
    autentique_base_url: str = "https://api.autentique.com.br/v2"
    autentique_timeout: int = 30
    autentique_webhook_secret: Optional[str] = None
    autentique_require_signature: bool = True

    # File storage for generated and signed documents
    storage_backend: str = "local"
    storage_local_dir: str = "uploads"
    storage_base_url: str = "http://localhost:8000/uploads"
    temp_dir: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None
    s3_bucket_name: Optional[str] = None

    # Job queue
    queue_lease_seconds: int = 300
    queue_max_attempts: int = 3
    queue_batch_size: int = 10

    webhook_retention_days: int = 30

    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    @property
    def db_url(self) -> str:
        """
        Sync database URL
        """
        if self.database_url:
            return self.database_url
        return f"mysql+pymysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_database}"

    @property
    def redis_url(self) -> str:
        """
        Redis connection URL
        """
        if self.redis_username and self.redis_password:
            return f"redis://{self.redis_username}:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}"

    @property
    def celery_broker(self) -> str:
        """
        Celery broker URL
        """
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """
        Celery backend URL
        """
        return f"{self.redis_url}/2"


settings = Settings()
