"""API configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """API settings loaded from environment."""

    database_url: str = "sqlite:///data/multas.db"
    cors_origins: str = "http://localhost:3000"
    debug: bool = False
    map_cache_size: int = 512
    # Curation endpoints write judgments; keep them off public deployments.
    enable_curation: bool = True

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    model_config = {"env_prefix": "API_", "env_file": ".env"}


settings = Settings()
