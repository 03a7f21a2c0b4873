import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    SUPABASE_URL: str = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    MEDIA_STREAM_URL: str = os.getenv("MEDIA_STREAM_URL")
    ELEVENLABS_API_KEY: str = os.getenv("ELEVENLABS_API_KEY")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "Musa Voice AI <notifications@resend.dev>")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:5173")
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Tokyo")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def api_base_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/api/v1"

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

settings = Settings()
