from pydantic_settings import BaseSettings
from typing import Dict, List, Optional
import os


class Settings(BaseSettings):
    # API Configuration
    app_name: str = "Course Creator API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "course_creator"

    # LLM providers
    default_provider: str = "openai"
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    gemini_model: str = "gemini-1.5-pro"
    openai_base_url: str = "https://api.openai.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_timeout: float = 30.0
    llm_max_retries: int = 3
    llm_retry_delay: float = 1.0
    llm_temperature: float = 0.3

    # Token limits (conservative, below the model ceiling)
    model_max_tokens: int = 16384
    token_limits: Dict[str, int] = {
        "analysis": 4000,
        "lessonGeneration": 3000,
        "moduleDescription": 2000,
        "moduleNames": 1000,
        "lessonCount": 1000,
    }

    # Content chunking
    openai_max_chunk_size: int = 8000
    gemini_max_chunk_size: int = 12000
    chunk_overlap: int = 500
    min_chunk_size: int = 1000
    max_chunks: int = 20

    # Chunk processing
    chunk_batch_size: int = 3
    chunk_batch_delay: float = 1.0

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000", "http://localhost:5173"]

    # Environment detection
    environment: str = "development"

    class Config:
        env_file = ".env"
        case_sensitive = False
        # Allow extra fields to be ignored instead of causing errors
        extra = "ignore"

    # Helper methods (not Pydantic fields)
    @property
    def cors_origins_list(self) -> List[str]:
        return list(self.cors_origins)

    def is_container(self) -> bool:
        """Check if running in a container"""
        return os.path.exists("/.dockerenv") or os.environ.get("CONTAINER") == "true"

    def get_api_key(self, provider: str) -> Optional[str]:
        """Get the configured API key for a provider, ignoring placeholders"""
        key = {
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider)

        if not key or not key.strip():
            return None
        # Template values copied from .env.example are not real keys
        if "your-" in key or "_here" in key:
            return None
        return key.strip()

    def available_providers(self) -> List[str]:
        """Providers that have a usable API key"""
        return [p for p in ("openai", "gemini") if self.get_api_key(p)]

    def get_max_chunk_size(self, provider: str) -> int:
        """Per-request character budget for a provider"""
        if provider == "gemini":
            return self.gemini_max_chunk_size
        return self.openai_max_chunk_size


settings = Settings()
