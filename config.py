import os


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME", "bloodbank")
    PORT = int(os.getenv("PORT", 8000))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # Stock level bands shown on the facility dashboard
    STOCK_SUFFICIENT_ABOVE = int(os.getenv("STOCK_SUFFICIENT_ABOVE", 10))
    STOCK_LIMITED_ABOVE = int(os.getenv("STOCK_LIMITED_ABOVE", 5))

    DONATION_INTERVAL_DAYS = int(os.getenv("DONATION_INTERVAL_DAYS", 90))
