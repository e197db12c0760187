import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Translation backend (semantic-search edge function)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SEMANTIC_SEARCH_URL = os.getenv(
    "SEMANTIC_SEARCH_URL",
    f"{SUPABASE_URL.rstrip('/')}/functions/v1/semantic-search" if SUPABASE_URL else None,
)

# Local AI translator
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
QUERY_AGENT_MODEL = os.getenv("QUERY_AGENT_MODEL", "gpt-5-mini")

# Card search
SCRYFALL_BASE_URL = "https://api.scryfall.com"
SCRYFALL_RATE_LIMIT_MS = 100  # 100ms between requests

# Search handler
SEARCH_TIMEOUT_MS = 15000  # 15 seconds
RATE_LIMIT_COOLDOWN_MS = 30000  # cooldown after the backend reports a rate limit
FALLBACK_CONFIDENCE = 0.5
QUERY_PREVIEW_LENGTH = 60

# Translation cache
RESULT_CACHE_TTL_MS = 30 * 60 * 1000  # 30 minutes
MAX_CACHE_SIZE = 50

# Client-side request limiter
SEARCH_RATE_LIMIT_PER_MINUTE = 20
IDENTICAL_SEARCH_COOLDOWN_MS = 500

# Query validation
MAX_QUERY_LENGTH = 400

# History
MAX_HISTORY_ITEMS = 20
STORAGE_DIR = os.getenv("OFFMETA_STORAGE_DIR", str(Path.home() / ".offmeta"))

LOG_LEVEL = os.getenv("OFFMETA_LOG_LEVEL", "WARNING")
