"""
Constantes globais do Podcast Search API.

Este arquivo centraliza constantes que são usadas em múltiplos módulos.
Constantes específicas de cada módulo devem ficar em seus próprios arquivos.
"""

# Versão do sistema
VERSION = "1.0.0"

# Parâmetros fixos enviados à iTunes Search API
ITUNES_MEDIA = "podcast"
ITUNES_ENTITY = "podcast"
ITUNES_PODCAST_ENTITIES = ("podcast", "podcastAuthor", "podcastEpisode")
ITUNES_SEARCH_PATH = "/search"
ITUNES_USER_AGENT = "iTunes-Podcast-Search/1.0"

# Defaults de busca
DEFAULT_COUNTRY = "us"
DEFAULT_LIMIT = 20
DEFAULT_OFFSET = 0
MAX_LIMIT = 200

# Status com código HTTP que sinalizam rate limit do upstream
RATE_LIMIT_STATUS_CODES = frozenset([429, 503])

# Headers de quota do upstream
RATE_LIMIT_REMAINING_HEADERS = ("X-RateLimit-Remaining", "X-Rate-Limit-Remaining")
RETRY_AFTER_HEADER = "Retry-After"

# Códigos de erro expostos na API
ERROR_RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
ERROR_ITUNES_API = "ITUNES_API_ERROR"
ERROR_INTERNAL = "INTERNAL_ERROR"
ERROR_JOB_PROCESSING = "JOB_PROCESSING_ERROR"
ERROR_PODCAST_NOT_FOUND = "PODCAST_NOT_FOUND"
ERROR_VALIDATION = "VALIDATION_ERROR"

# Origem dos itens retornados por uma busca
SOURCE_ITUNES = "itunes"
SOURCE_LOCAL = "local"
