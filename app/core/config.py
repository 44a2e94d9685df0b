# backend-server/app/core/config.py
from pydantic_settings import BaseSettings; from dotenv import load_dotenv
load_dotenv()
class Settings(BaseSettings):
    # Both connection parameters are required; a missing one fails at import.
    DATABASE_URL: str; JWT_SECRET_KEY: str; JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    SESSION_HEARTBEAT_SECONDS: int = 5 * 60
    DEFAULT_WORKING_HOURS: float = 40
    LOG_LEVEL: str = "INFO"
settings = Settings()
