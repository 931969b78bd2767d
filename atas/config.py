import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("Missing DATABASE_URL!")

# dadosabertos.compras.gov.br, ARP module
SOURCE_BASE_URL = os.getenv("SOURCE_BASE_URL", "https://dadosabertos.compras.gov.br")
SOURCE_UNIT_CODE = os.getenv("SOURCE_UNIT_CODE", "986001")
SOURCE_PAGE_SIZE = int(os.getenv("SOURCE_PAGE_SIZE", "500"))

SOURCE_MAX_ATTEMPTS = int(os.getenv("SOURCE_MAX_ATTEMPTS", "3"))
SOURCE_ATTEMPT_TIMEOUT = float(os.getenv("SOURCE_ATTEMPT_TIMEOUT", "45"))
SOURCE_RETRY_WAIT = float(os.getenv("SOURCE_RETRY_WAIT", "5"))

SYNC_PAGE_DELAY = float(os.getenv("SYNC_PAGE_DELAY", "1"))
SYNC_MAX_CONCURRENCY = int(os.getenv("SYNC_MAX_CONCURRENCY", "10"))
SYNC_LAUNCH_INTERVAL_MS = int(os.getenv("SYNC_LAUNCH_INTERVAL_MS", "1000"))
# upper bound for pages in flight, also the size of the fetch pool
SYNC_MAX_CONCURRENCY_LIMIT = int(os.getenv("SYNC_MAX_CONCURRENCY_LIMIT", "32"))
