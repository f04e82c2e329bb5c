import os
from dotenv import load_dotenv

load_dotenv()

# --- Secrets / endpoints ---
SUPABASE_URL: str = os.environ.get("SUPABASE_URL")
SUPABASE_SERVICE_KEY: str = os.environ.get("SUPABASE_SERVICE_KEY")
GEMINI_API_KEY: str = os.environ.get("GEMINI_API_KEY")
FDC_API_KEY: str = os.environ.get("FDC_API_KEY", "DEMO_KEY")
FDC_SEARCH_URL = "https://api.nal.usda.gov/fdc/v1/foods/search"

# --- Models ---
INTENT_MODEL = os.environ.get("INTENT_MODEL", "gemini-2.5-flash")
REASONING_MODEL = os.environ.get("REASONING_MODEL", "gemini-2.5-flash")
RESPONSE_MODEL = os.environ.get("RESPONSE_MODEL", "gemini-2.5-flash")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# --- Dialogue tunables ---
MAX_TOOL_ITERATIONS = int(os.environ.get("MAX_TOOL_ITERATIONS", 5))
MAX_HISTORY_MESSAGES = 8
MAX_MESSAGE_CHARS = 2000
TOOL_WORKERS = 4

# --- Retry ---
RETRY_MAX_ATTEMPTS = int(os.environ.get("RETRY_MAX_ATTEMPTS", 3))
RETRY_BASE_DELAY = float(os.environ.get("RETRY_BASE_DELAY", 1.0))
HTTP_TIMEOUT = 15

# --- Matching ---
RECIPE_MATCH_THRESHOLD = 60
AMBIGUITY_MARGIN = 5
AMBIGUITY_RATIO = 0.85
PRODUCT_MATCH_THRESHOLD = 70
# rows pulled by the substring pre-filter; all of them are scored
RECIPE_CANDIDATE_LIMIT = 500
