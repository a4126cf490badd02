from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import inspect

from database import Base, engine, get_db
from models import SystemConfig

logger = logging.getLogger(__name__)

MIGRATION_MARKER_KEY = "migration:presentation_bootstrap:v1"


def has_bootstrap_marker() -> bool:
    if not inspect(engine).has_table(SystemConfig.__tablename__):
        return False
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        return marker is not None
    finally:
        db.close()


def set_bootstrap_marker() -> None:
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        value = datetime.now(timezone.utc).isoformat()
        if marker:
            marker.value = value
        else:
            db.add(SystemConfig(key=MIGRATION_MARKER_KEY, value=value))
        db.commit()
    finally:
        db.close()


def clear_bootstrap_marker() -> bool:
    if not inspect(engine).has_table(SystemConfig.__tablename__):
        return False
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        if not marker:
            return False
        db.delete(marker)
        db.commit()
        return True
    finally:
        db.close()


def run_bootstrap_migrations() -> None:
    existing = set(inspect(engine).get_table_names())
    missing = [table.name for table in Base.metadata.sorted_tables if table.name not in existing]
    Base.metadata.create_all(bind=engine)
    if missing:
        logger.info("Created tables: %s", ", ".join(missing))
    else:
        logger.info("All presentation tables already exist; nothing to create.")
