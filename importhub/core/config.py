from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    service_name: str = "importhub"

    postgres_url: str = "postgresql+psycopg://app:app@db:5432/app"
    redis_url: str = "redis://redis:6379/0"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    # Tenant used when a token carries no tenant_id claim
    tenant_id: str = "12345678-1234-5678-1234-567812345678"

    # Middleware configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_format: str = "json"  # json or text
    enable_request_logging: bool = True

    # Metrics configuration (CloudWatch EMF)
    enable_metrics: bool = True
    metrics_namespace: str = ""  # defaults to service_name

    # CSV import limits
    import_max_upload_bytes: int = 200 * 1024 * 1024
    import_max_rows: int = 50_000
    import_sample_rows: int = 20
    import_preview_limit: int = 50
    import_batch_size: int = 200

    # Import job retention
    import_job_ttl_seconds: int = 2 * 60 * 60
    import_max_jobs_per_tenant: int = 50

    # Value coercion
    import_date_dayfirst: bool = False
    import_default_phone_region: str = "US"

    # Execution serialization per (tenant, entity type)
    import_lock_backend: str = "redis"  # redis or local
    import_lock_timeout_seconds: int = 30 * 60
    import_lock_wait_seconds: float = 30.0

    # External project-management connector
    connector_provider: str = "asana"
    connector_api_base: str = "https://app.asana.com/api/1.0"
    connector_request_interval_ms: int = 200
    connector_max_retries: int = 3
    connector_retry_base_seconds: float = 1.0
    connector_timeout_seconds: float = 30.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
