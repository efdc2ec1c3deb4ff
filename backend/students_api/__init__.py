"""Students API - REST backend for student records stored in MongoDB."""

import time

__version__ = "1.0.0"

# Reference point for the uptime reported by /health.
PROCESS_STARTED_AT = time.monotonic()
