from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

PACKAGE_DIR = Path(__file__).resolve().parent.parent
BUNDLED_TEMPLATES_DIR = PACKAGE_DIR / "templates"


class Settings(BaseSettings):
    app_name: str = Field("invoice-agent", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Startup defaults for the provider selection (changed at runtime via /api/config/set)
    active_provider: str = Field("openai", alias="ACTIVE_PROVIDER")
    active_model: str = Field("gpt-4o", alias="ACTIVE_MODEL")

    # Provider credentials
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    google_api_key: str | None = Field(default=None, alias="GOOGLE_API_KEY")
    mistral_api_key: str | None = Field(default=None, alias="MISTRAL_API_KEY")
    groq_api_key: str | None = Field(default=None, alias="GROQ_API_KEY")
    deepseek_api_key: str | None = Field(default=None, alias="DEEPSEEK_API_KEY")
    together_api_key: str | None = Field(default=None, alias="TOGETHER_API_KEY")
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    nvidia_api_key: str | None = Field(default=None, alias="NVIDIA_API_KEY")
    ollama_base_url: str = Field("http://localhost:11434", alias="OLLAMA_BASE_URL")

    # LLM call limits
    llm_timeout_seconds: float = Field(90.0, alias="LLM_TIMEOUT_SECONDS")
    llm_max_tokens: int = Field(8192, alias="LLM_MAX_TOKENS")
    template_generation_max_tokens: int = Field(16000, alias="TEMPLATE_GENERATION_MAX_TOKENS")

    # Extraction policies
    pdf_text_min_chars: int = Field(50, alias="PDF_TEXT_MIN_CHARS")
    pdf_render_dpi: int = Field(200, alias="PDF_RENDER_DPI")
    rescue_prompt_max_chars: int = Field(3000, alias="RESCUE_PROMPT_MAX_CHARS")
    raw_snippet_max_chars: int = Field(800, alias="RAW_SNIPPET_MAX_CHARS")
    max_file_size_mb: int = Field(10, alias="MAX_FILE_SIZE_MB")

    # Storage
    upload_dir: Path = Field(Path("uploads"), alias="UPLOAD_DIR")
    output_dir: Path = Field(Path("outputs"), alias="OUTPUT_DIR")
    templates_dir: Path = Field(BUNDLED_TEMPLATES_DIR, alias="TEMPLATES_DIR")
    default_template_path: Path | None = Field(default=None, alias="DEFAULT_TEMPLATE_PATH")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}

    def resolved_default_template_path(self) -> Path:
        """Default workbook location; lives next to the HTML templates unless overridden."""
        return self.default_template_path or (self.templates_dir / "default_template.xlsx")


settings = Settings()
