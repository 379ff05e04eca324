from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "JerseyNexus API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DATABASE_URL: str = "sqlite:///./jerseynexus.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 1 week

    # Public URLs used for gateway redirects
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:5000"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    # Khalti (KPG-2)
    KHALTI_SECRET_KEY: str = "live_secret_key_placeholder"
    KHALTI_API_URL: str = "https://a.khalti.com/api/v2/epayment/"
    KHALTI_RETURN_URL: str = "http://localhost:5000/api/payments/khalti/callback"
    KHALTI_TIMEOUT: int = 30

    # eSewa ePay v2 (defaults are the public sandbox credentials)
    ESEWA_MERCHANT_CODE: str = "EPAYTEST"
    ESEWA_SECRET_KEY: str = "8gBm/:&EnhH.1/q"
    ESEWA_FORM_URL: str = "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
    ESEWA_STATUS_URL: str = "https://rc.esewa.com.np/api/epay/transaction/status/"
    ESEWA_TIMEOUT: int = 30

    # AWS S3
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "ap-south-1"
    S3_BUCKET: str = "jerseynexus-media"

    # Uploads
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp", "image/gif"]

    # Logging
    LOG_FILE: str = "logs/jerseynexus.log"
    LOG_LEVEL: str = "INFO"
    LOG_ROTATION: str = "10 MB"
    LOG_RETENTION: str = "10 days"
    LOG_COMPRESSION: str = "zip"
    LOG_ENQUEUE: bool = True
    LOG_WARNING_STATUS_CODES: List[int] = [401, 402, 403, 404]

    # Seed admin
    ADMIN_EMAIL: str = "admin@jerseynexus.com"
    ADMIN_PASSWORD: str = "Admin123!@#"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def S3_BASE_URL(self) -> str:
        return f"https://{self.S3_BUCKET}.s3.{self.AWS_REGION}.amazonaws.com"


settings = Settings()
