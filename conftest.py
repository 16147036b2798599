import os

# Settings are read at import time; point them at throwaway backends
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CACHE_ENABLED", "true")
os.environ.setdefault("QUEUE_MAX_ATTEMPTS", "3")
os.environ.setdefault("AUTENTIQUE_API_KEY", "test-api-key")
