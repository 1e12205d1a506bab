from datetime import UTC, datetime
from pathlib import Path

# HTTP identity and remote endpoints
HEADERS = {"User-Agent": "ArticleStatus/1.0 (course article tracking; mailto:dashboard@example.org)"}
REPLICA_ENDPOINT = "https://replica-revision-tools.wmcloud.org/"
REPLICA_ARTICLES_SCRIPT = "articles.php"
API_TIMEOUT = 30  # Seconds per HTTP request
REPLICA_MAX_RETRIES = 3  # Transport attempts per call (429/5xx only)

# Reconciliation tuning knobs
REPLICA_CHUNK_SIZE = 100  # Page ids per id lookup
MEDIAWIKI_BATCH_SIZE = 50  # Action API limit for non-bot accounts
CONCURRENCY_LIMIT = 3  # Parallel workers the replica service tolerates
ARTICLE_BATCH_SIZE = 1000  # Articles fed to one reconciliation pass
COURSE_UPDATE_GRACE_DAYS = 30  # Courses stay current this long after ending
REMOTE_BACKEND = "replica"

# Four-byte unicode titles are stored URL-encoded and cannot be compared
ESCAPED_TITLE_PREFIX = "%"

# Local catalog location
DATA_DIR = Path("data")
CATALOG_DB = DATA_DIR / "articles.sqlite"

# Run logging and telemetry
RUN_ID = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
LOG_DIR = Path("logs")
STATS_FILE = LOG_DIR / f"article_status_stats_{RUN_ID}.jsonl"
SUMMARY_FILE = LOG_DIR / f"article_status_summary_{RUN_ID}.json"
STATS_FLUSH_EVERY = 500
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
