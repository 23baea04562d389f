# backend/config.py
import os
from dotenv import load_dotenv

load_dotenv()

# SQLite for speed; point DATABASE_URL at Postgres in deployment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")
VAT_RATE = float(os.getenv("VAT_RATE", "0.18"))

# How many characters before a {{price_per_applicant}} token the tier rules may look at
TIER_CONTEXT_WINDOW = int(os.getenv("TIER_CONTEXT_WINDOW", "200"))
