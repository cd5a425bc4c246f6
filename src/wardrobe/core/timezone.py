"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments, and provides
the naive-UTC clock used for every persisted timestamp.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Timestamps are stored without tzinfo (TIMESTAMP WITHOUT TIME ZONE) so that
    PostgreSQL and SQLite compare them the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
