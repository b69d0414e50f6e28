import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

WORK_ORDER_PREFIX = os.getenv("WORK_ORDER_PREFIX", "WO")
DEFAULT_ADVANCE_GENERATION_HOURS = int(os.getenv("DEFAULT_ADVANCE_GENERATION_HOURS", "24"))
DEFAULT_PRIORITY_SCORE = int(os.getenv("DEFAULT_PRIORITY_SCORE", "50"))
DEFAULT_RUNTIME_HOURS_PER_DAY = float(os.getenv("DEFAULT_RUNTIME_HOURS_PER_DAY", "8.0"))
RUNTIME_AVERAGE_WINDOW_DAYS = int(os.getenv("RUNTIME_AVERAGE_WINDOW_DAYS", "30"))
GENERATION_INTERVAL_MINUTES = int(os.getenv("GENERATION_INTERVAL_MINUTES", "60"))

# Permission required to let a routine approve its own generated work orders
APPROVE_WORK_ORDERS_PERMISSION = "work-orders.approve"

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
