from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg://user:password@db/snowproblem"

    AWS_ENDPOINT_URL: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION_NAME: str = "us-east-1"
    S3_BUCKET_NAME: str = "job-photos"
    PHOTO_PUBLIC_BASE_URL: str = "https://storage.snowproblem.app/job-photos"
    MAX_JOB_PHOTOS: int = 5

    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"
    BID_EXPIRY_SWEEP_SECONDS: int = 15 * 60

    # Tokens are issued by the hosted identity provider, we only verify them.
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = "authenticated"

    MAPBOX_TOKEN: str = ""
    MAPBOX_BASE_URL: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    GEOCODING_TIMEOUT_SECONDS: float = 10.0

    STRIPE_SECRET_KEY: str = ""
    APP_URL: str = "http://localhost:3000"

    class Config:
        env_file = ".env"

settings = Settings()
