from pathlib import Path
from typing import Optional
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )
    
    project_name: str = "LitBrief"
    log_level: str = "INFO"
    
    openai_api_key: SecretStr = Field(description="OpenAI API key for LLM calls")
    openai_model: str = "gpt-4o-mini"
    generation_temperature: float = 0.7
    scoring_temperature: float = 0.3
    
    arxiv_api_url: str = "https://export.arxiv.org/api/query"
    # arXiv asks clients to leave at least 3 seconds between requests
    arxiv_min_interval_seconds: float = Field(default=3.0, ge=0.0)
    search_max_results: int = Field(default=100, ge=1, le=2000)
    search_sort_by: str = "relevance"
    search_sort_order: str = "descending"
    
    retry_max_attempts: int = Field(default=4, ge=1, description="Total attempts per external call")
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    request_timeout_seconds: Optional[float] = Field(default=30.0, gt=0.0)
    
    default_query_count: int = Field(default=3, ge=1, le=20)
    scoring_batch_count: int = Field(default=4, ge=1)
    
    database_path: Path = Path("litbrief.db")
    
    redis_enabled: bool = True
    redis_host: str = "localhost"
    redis_port: int = 6379
    run_lock_ttl_seconds: int = 900
    
    # API contact email used in User-Agent headers for polite API access
    api_contact_email: str = Field(
        default="researcher@example.com",
        description="Email for API contact/User-Agent (update with your real email)"
    )
    
    @property
    def API_CONTACT_EMAIL(self) -> str:
        return self.api_contact_email
    
    @property
    def OPENAI_API_KEY(self) -> str:
        return self.openai_api_key.get_secret_value()
    
    @property
    def PROJECT_NAME(self) -> str:
        return self.project_name
    
    @property
    def REDIS_HOST(self) -> str:
        return self.redis_host
    
    @property
    def REDIS_PORT(self) -> int:
        return self.redis_port
    
    @property
    def DATABASE_PATH(self) -> Path:
        return self.database_path


settings = Settings()
