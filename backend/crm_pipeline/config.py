"""Application configuration from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "CRM Pipeline Service"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # Upstream CRM REST API
    crm_api_url: str = "http://localhost:5000/api"
    crm_api_timeout: float = 15.0

    # Pipeline page
    activity_limit: int = 50
    agent_role: str = "sales_agent"
    board_config_path: Path = Path(__file__).parent.parent.parent / "samples" / "pipeline.yaml"

    # Routing guard
    pipeline_roles: list[str] = ["admin", "sales_manager"]

    # CORS - allow frontend
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = {"env_file": ".env", "env_prefix": "CRMP_"}


settings = Settings()
