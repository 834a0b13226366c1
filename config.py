"""
Project paths and runtime settings
"""
from pathlib import Path
import os

from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent
DATA_DIR = BASE_DIR / "data"
DB_DIR = DATA_DIR / "db"
UPLOADS_DIR = DATA_DIR / "uploads"

# Database
DATABASE_PATH = os.getenv("DATABASE_PATH", str(DB_DIR / "sop_engine.db"))

# LLM Settings
AI_PROVIDER = os.getenv("AI_PROVIDER", "google").lower()
GOOGLE_API_KEY = os.getenv("GEMINI_API_KEY")
GOOGLE_MODEL_NAME = os.getenv("GOOGLE_MODEL", "gemini-2.5-flash")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL_NAME = os.getenv("OPENAI_MODEL", "gpt-4.1")
OPENAI_REASONING_EFFORT = os.getenv("OPENAI_REASONING_EFFORT")
GEMINI_THINKING_BUDGET = int(os.environ["GEMINI_THINKING_BUDGET"]) if os.getenv("GEMINI_THINKING_BUDGET") else None
EXTRACTION_TEMPERATURE = float(os.getenv("EXTRACTION_TEMPERATURE", "0.1"))

# Rule engine
# "canonical" sorts the rule pair before deriving a conflict id,
# "scan_order" keeps the pair in collection order.
CONFLICT_ID_MODE = os.getenv("CONFLICT_ID_MODE", "canonical").lower()
DEFAULT_CLIENT_PREFIX = os.getenv("DEFAULT_CLIENT_PREFIX", "SOP")
TRUSTED_INGESTION = os.getenv("TRUSTED_INGESTION", "false").lower() in ("1", "true", "yes")

# Extraction defaults stamped on AI candidates
DEFAULT_CONFIDENCE = 85
MIN_SEGMENT_LENGTH = 50
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def ensure_dirs():
    """Create all required directories"""
    dirs = [DB_DIR, UPLOADS_DIR]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)


if __name__ == "__main__":
    ensure_dirs()

    print("=== SOP Engine Settings ===\n")
    print(f"  Database:       {DATABASE_PATH}")
    print(f"  AI provider:    {AI_PROVIDER}")
    print(f"  Gemini key:     {'✅' if GOOGLE_API_KEY else '❌'} ({GOOGLE_MODEL_NAME})")
    print(f"  OpenAI key:     {'✅' if OPENAI_API_KEY else '❌'} ({OPENAI_MODEL_NAME})")
    print(f"  Conflict ids:   {CONFLICT_ID_MODE}")
    print(f"  Client prefix:  {DEFAULT_CLIENT_PREFIX}")
    print(f"  Trusted ingest: {TRUSTED_INGESTION}")
