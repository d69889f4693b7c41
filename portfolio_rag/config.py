import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
BASE_DIR = Path(__file__).parent.parent
load_dotenv(dotenv_path=BASE_DIR / '.env')


def _optional_float(name: str):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


# Embedding provider configuration
# EMBEDDING_PROVIDER selects the client: gemini (default) or openai
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "gemini").lower()
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

_DEFAULT_MODELS = {
    "gemini": "text-embedding-004",
    "openai": "text-embedding-3-small",
}
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", _DEFAULT_MODELS.get(EMBEDDING_PROVIDER, "text-embedding-004"))
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "768"))
EMBEDDING_API_URL = os.getenv(
    "EMBEDDING_API_URL",
    f"https://generativelanguage.googleapis.com/v1beta/models/{EMBEDDING_MODEL}:embedContent",
)
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))

# Batch pacing for offline embedding generation
# Google allows ~60 RPM on the free tier, 5 parallel calls + 200ms pause stays under it
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "5"))
EMBED_BATCH_PAUSE_MS = int(os.getenv("EMBED_BATCH_PAUSE_MS", "200"))

# Retry policy for the offline build (the clients themselves never retry)
EMBED_MAX_ATTEMPTS = int(os.getenv("EMBED_MAX_ATTEMPTS", "3"))
EMBED_RETRY_MIN_WAIT = 2  # seconds
EMBED_RETRY_MAX_WAIT = 10  # seconds

# Knowledge base and cache locations
RAG_CACHE_PATH = os.getenv("RAG_CACHE_PATH", str(BASE_DIR / "data" / "embeddings-cache.json"))
KNOWLEDGE_SOURCE_PATH = os.getenv("KNOWLEDGE_SOURCE_PATH", str(BASE_DIR / "data" / "knowledge.json"))
PROJECT_DOCS_DIR = os.getenv("PROJECT_DOCS_DIR", str(BASE_DIR / "data" / "project-docs"))

# Retrieval configuration
RAG_TOP_K = int(os.getenv("RAG_TOP_K", "5"))
# Unset means every semantic result is passed through (no similarity cutoff)
RAG_MIN_SCORE = _optional_float("RAG_MIN_SCORE")
# Upper bound for the query embedding call before falling back to keyword search
# 0 disables the timeout
RAG_QUERY_TIMEOUT_SECONDS = float(os.getenv("RAG_QUERY_TIMEOUT_SECONDS", "8"))
# 0 disables the context length limit
RAG_MAX_CONTEXT_CHARS = int(os.getenv("RAG_MAX_CONTEXT_CHARS", "0"))

# Name used in the grounding instruction appended to the context block
PORTFOLIO_OWNER_NAME = os.getenv("PORTFOLIO_OWNER_NAME", "the portfolio owner")
