import os

BACKEND_API_URL = os.getenv("BACKEND_API_URL", "http://localhost:8080/api")
UPLOADS_BASE_URL = os.getenv("UPLOADS_BASE_URL", "http://localhost:8080")
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "15"))
SAVE_DEBOUNCE_SECONDS = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "1.0"))
PRINT_SCALE = float(os.getenv("PRINT_SCALE", "0.64"))
SAFE_ROUTE = os.getenv("SAFE_ROUTE", "/tasks")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
