import os
from dotenv import load_dotenv

# Carregar variáveis do arquivo .env
load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings:
    """
    Configuração central, lida de variáveis de ambiente.

    Durações em segundos. `Settings()` relê o ambiente, então testes podem
    montar instâncias isoladas com monkeypatch.setenv.
    """

    def __init__(self):
        # Aplicação
        self.APP_NAME: str = os.getenv("APP_NAME", "Podcast Search API")
        self.API_PREFIX: str = os.getenv("API_PREFIX", "/api/v1")

        # Logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json | text

        # iTunes Search API
        self.ITUNES_API_URL: str = os.getenv("ITUNES_API_URL", "https://itunes.apple.com")
        self.ITUNES_API_TIMEOUT: float = _env_float("ITUNES_API_TIMEOUT", 10.0)

        # Retry simples (falha de rede sem resposta): delay fixo
        self.ITUNES_API_RETRY_ATTEMPTS: int = _env_int("ITUNES_API_RETRY_ATTEMPTS", 3)
        self.ITUNES_API_RETRY_DELAY: float = _env_float("ITUNES_API_RETRY_DELAY", 1.0)

        # Retry de rate limit (429/503/3xx): backoff exponencial
        self.ITUNES_RATE_LIMIT_RETRY_ATTEMPTS: int = _env_int("ITUNES_RATE_LIMIT_RETRY_ATTEMPTS", 5)
        self.ITUNES_RATE_LIMIT_BACKOFF_MULTIPLIER: float = _env_float("ITUNES_RATE_LIMIT_BACKOFF_MULTIPLIER", 2.0)
        self.ITUNES_RATE_LIMIT_MAX_DELAY: float = _env_float("ITUNES_RATE_LIMIT_MAX_DELAY", 60.0)

        # Rate limiter de saída
        self.ITUNES_MAX_REQUESTS_PER_SECOND: int = _env_int("ITUNES_MAX_REQUESTS_PER_SECOND", 20)

        # Cache de buscas
        self.SEARCH_CACHE_TTL: float = _env_float("SEARCH_CACHE_TTL", 300.0)  # 5 minutos
        self.SEARCH_CACHE_MAX_ENTRIES: int = _env_int("SEARCH_CACHE_MAX_ENTRIES", 1000)
        self.SEARCH_CACHE_SWEEP_INTERVAL: float = _env_float("SEARCH_CACHE_SWEEP_INTERVAL", 600.0)  # 10 minutos

        # Fila de persistência
        self.JOB_MAX_ATTEMPTS: int = _env_int("JOB_MAX_ATTEMPTS", 3)
        self.WORKER_POLL_INTERVAL: float = _env_float("WORKER_POLL_INTERVAL", 10.0)
        self.WORKER_BATCH_SIZE: int = _env_int("WORKER_BATCH_SIZE", 10)

        # Storage: "memory" (dev/testes) ou "postgres"
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "")
        self.DATABASE_POOL_MIN_SIZE: int = _env_int("DATABASE_POOL_MIN_SIZE", 2)
        self.DATABASE_POOL_MAX_SIZE: int = _env_int("DATABASE_POOL_MAX_SIZE", 10)

    @property
    def uses_postgres(self) -> bool:
        return self.STORAGE_BACKEND == "postgres"


settings = Settings()
