"""
Seed the local database with demo content.

Usage:
    python seed_db.py
    ADGATE_DATA_DIR=/tmp/adgate python seed_db.py
"""

import logging
import os

from adgate.adapters.sqlite_db import SQLiteContentCatalog, init_schema
from adgate.domain.entities import ContentInfo

logger = logging.getLogger(__name__)

DEMO_CONTENT = [
    ContentInfo(id="welcome", title="Welcome guide", required_ads=0),
    ContentInfo(id="deep-dive", title="Deep dive article", required_ads=3),
    ContentInfo(id="premium-report", title="Premium report", required_ads=5),
    ContentInfo(id="default-post", title="Post using the default requirement"),
    ContentInfo(id="archived", title="Archived post", required_ads=2, status="inactive"),
]


def seed(data_dir: str | None = None) -> str:
    data_dir = data_dir or os.environ.get("ADGATE_DATA_DIR", "./data")
    db_path = f"{data_dir}/adgate.db"
    logger.info("Seeding to %s", db_path)

    init_schema(db_path)
    catalog = SQLiteContentCatalog(db_path)
    for item in DEMO_CONTENT:
        catalog.upsert(item)
        logger.info("Upserted content %s (%s)", item.id, item.title)

    return db_path


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    seed()
