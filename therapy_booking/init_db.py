# therapy_booking/init_db.py
"""
Create every table on the configured database.

On PostgreSQL this also installs btree_gist and the
``sessions_no_overlap_per_therapist`` exclusion constraint; on SQLite the
equivalent triggers. Both hang off the sessions table's ``after_create``
event, so they are only added when that table is created.

    DATABASE_URL=postgresql+psycopg2://... therapy-booking-init-db
"""

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from . import models  # noqa: F401
from .database import Base, engine

logger = logging.getLogger(__name__)


def init_db(bind: Optional[Engine] = None) -> None:
    target = bind if bind is not None else engine
    Base.metadata.create_all(bind=target)
    logger.info("Schema ready on %s", target.dialect.name)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    init_db()


if __name__ == "__main__":
    main()
