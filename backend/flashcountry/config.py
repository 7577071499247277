import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")
    TESTING = False

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy / IP headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Catalog / images
    CATALOG_PATH = os.environ.get("CATALOG_PATH", "")
    IMAGE_BASE_URL = os.environ.get("IMAGE_BASE_URL", "https://images.flashcountry.local")
    IMAGES_PER_ROUND = int(os.environ.get("IMAGES_PER_ROUND", "100"))
    IMAGE_INTERVAL_MS = int(os.environ.get("IMAGE_INTERVAL_MS", "80"))

    # Rooms
    ROOM_CODE_LENGTH = int(os.environ.get("ROOM_CODE_LENGTH", "5"))
    ROOM_MAX_AGE_SEC = int(os.environ.get("ROOM_MAX_AGE_SEC", "3600"))
    REAPER_INTERVAL_SEC = int(os.environ.get("REAPER_INTERVAL_SEC", "300"))

    # Game
    MAX_ROUNDS = int(os.environ.get("MAX_ROUNDS", "5"))
    COUNTDOWN_SEC = int(os.environ.get("COUNTDOWN_SEC", "3"))
    ROUND_DURATION_SEC = int(os.environ.get("ROUND_DURATION_SEC", "30"))
    STRESS_WINDOW_SEC = int(os.environ.get("STRESS_WINDOW_SEC", "10"))
    BASE_SCORE = int(os.environ.get("BASE_SCORE", "30"))
    FIRST_BONUS = int(os.environ.get("FIRST_BONUS", "5"))
    TIMER_TICK_SEC = float(os.environ.get("TIMER_TICK_SEC", "0.1"))

    # Presence
    HEARTBEAT_INTERVAL_SEC = int(os.environ.get("HEARTBEAT_INTERVAL_SEC", "10"))
    DISCONNECT_GRACE_SEC = int(os.environ.get("DISCONNECT_GRACE_SEC", "30"))
    IDLE_THRESHOLD_SEC = int(os.environ.get("IDLE_THRESHOLD_SEC", "60"))
