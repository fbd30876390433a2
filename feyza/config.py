import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")
    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    # service role key; row-level security is bypassed by this client
    SUPABASE_KEY = os.environ.get("SUPABASE_KEY")
    SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET")
    SUPABASE_STORAGE_BUCKET = os.environ.get("SUPABASE_STORAGE_BUCKET", "payment-proofs")
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 465))
    EMAIL_USER = os.environ.get("EMAIL_USER")
    EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD")
    SUPPORT_EMAIL = os.environ.get("SUPPORT_EMAIL", "support@feyza.app")
    PUBLIC_BASE_URL = (os.environ.get("PUBLIC_BASE_URL") or "http://localhost:5000").rstrip("/")
    CRON_SECRET = os.environ.get("CRON_SECRET")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SUPABASE_URL = "http://supabase.test"
    SUPABASE_KEY = "service-role-test"
    SUPABASE_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
    EMAIL_USER = "noreply@feyza.test"
    EMAIL_PASSWORD = "secret"
    PUBLIC_BASE_URL = "http://feyza.test"
    CRON_SECRET = "cron-test"
    LOG_LEVEL = "DEBUG"
