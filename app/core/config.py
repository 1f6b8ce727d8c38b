from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Venue Scheduling Engine"
    API_V1_STR: str = "/api/v1"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "12345"
    POSTGRES_DB: str = "scheduling_db"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: str = ""
    CREATE_DATABASE_ON_STARTUP: bool = True

    # Calendar
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_SLOT_INCREMENT_MINUTES: int = 60
    MAX_RESOLVE_DAYS: int = 62
    NEXT_AVAILABLE_COUNT: int = 3
    NEXT_AVAILABLE_HORIZON_DAYS: int = 14

    # Holds & occupancy
    HOLD_TTL_MINUTES: int = 10
    OCCUPANCY_BUCKET_MINUTES: int = 15
    SWEEP_INTERVAL_SECONDS: int = 30

    # Waitlist
    OFFER_WINDOW_HOURS: int = 24
    WAITLIST_CASCADE: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @model_validator(mode="after")
    def check_bucket_grid(self):
        # UTC offsets are whole quarter hours; local slot edges must land on the bucket grid
        if self.OCCUPANCY_BUCKET_MINUTES < 1 or 15 % self.OCCUPANCY_BUCKET_MINUTES:
            raise ValueError("OCCUPANCY_BUCKET_MINUTES must divide 15")
        if self.DEFAULT_SLOT_INCREMENT_MINUTES % self.OCCUPANCY_BUCKET_MINUTES:
            raise ValueError("DEFAULT_SLOT_INCREMENT_MINUTES must be a multiple of OCCUPANCY_BUCKET_MINUTES")
        return self

    def assemble_db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"


settings = Settings()
settings.DATABASE_URL = settings.assemble_db_url()
