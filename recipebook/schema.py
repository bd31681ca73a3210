import logging
from typing import Any, Callable, List, Literal, Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from pydantic import BaseModel, ConfigDict
from sqlalchemy import Column, DateTime, String, delete, insert, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .database import Base, Database
from .errors import MigrationError, SchemaError
from .models import DEFAULT_SERVING_UNIT, SchemaMigration

logger = logging.getLogger(__name__)


def operations(conn: Connection) -> Operations:
    return Operations(MigrationContext.configure(conn))


def column_names(conn: Connection, table: str) -> set[str]:
    insp = inspect(conn)
    if not insp.has_table(table):
        return set()
    return {col["name"] for col in insp.get_columns(table)}


def add_column_if_missing(conn: Connection, table: str, column: Column) -> bool:
    """Add ``column`` to ``table`` unless a column of that name is already there."""
    if not inspect(conn).has_table(table):
        logger.warning("Cannot add %s.%s: table does not exist", table, column.name)
        return False
    if column.name in column_names(conn, table):
        return False
    logger.info("Adding column %s.%s", table, column.name)
    operations(conn).add_column(table, column)
    return True


def drop_column_if_present(conn: Connection, table: str, column: str) -> bool:
    if column not in column_names(conn, table):
        return False
    logger.info("Dropping column %s.%s", table, column)
    operations(conn).drop_column(table, column)
    return True


def migrate_legacy_columns(conn: Connection) -> bool:
    """Drop the ingredient tables if they still carry the old per-ingredient unit.

    Lossy: every ingredient and ingredient link is discarded and the tables
    are rebuilt empty by table creation.
    """
    if "unit" not in column_names(conn, "ingredients"):
        return False
    logger.warning("Legacy ingredients.unit column found; dropping recipe_ingredients and ingredients")
    op = operations(conn)
    if inspect(conn).has_table("recipe_ingredients"):
        op.drop_table("recipe_ingredients")
    op.drop_table("ingredients")
    return True


class Migration(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    version: int
    name: str
    phase: Literal["pre", "post"] = "post"
    upgrade: Callable[[Connection], Any]
    downgrade: Optional[Callable[[Connection], Any]] = None


MIGRATIONS: List[Migration] = [
    Migration(
        version=1,
        name="drop_legacy_ingredient_unit",
        phase="pre",
        upgrade=migrate_legacy_columns,
    ),
    Migration(
        version=2,
        name="recipe_serving_unit",
        upgrade=lambda conn: add_column_if_missing(
            conn, "recipes", Column("serving_unit", String(20), server_default=DEFAULT_SERVING_UNIT)
        ),
        downgrade=lambda conn: drop_column_if_present(conn, "recipes", "serving_unit"),
    ),
    Migration(
        version=3,
        name="tag_created_at",
        upgrade=lambda conn: add_column_if_missing(conn, "tags", Column("created_at", DateTime(timezone=True))),
        downgrade=lambda conn: drop_column_if_present(conn, "tags", "created_at"),
    ),
]


def applied_versions(db: Database) -> set[int]:
    with db.connect() as conn:
        return set(conn.scalars(select(SchemaMigration.version)))


def _run_phase(db: Database, phase: str, migrations: List[Migration], applied: set[int]) -> List[str]:
    done: List[str] = []
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.phase != phase or migration.version in applied:
            continue
        try:
            with db.connect() as conn:
                migration.upgrade(conn)
                conn.execute(insert(SchemaMigration).values(version=migration.version, name=migration.name))
        except (SQLAlchemyError, ValueError):
            logger.exception("Migration %03d %s failed; continuing without it", migration.version, migration.name)
            continue
        logger.info("Applied migration %03d %s", migration.version, migration.name)
        done.append(migration.name)
    return done


def ensure_schema(db: Database, migrations: List[Migration] = MIGRATIONS) -> List[str]:
    """Create and migrate the schema; returns the names of the steps applied now.

    ``pre`` steps run before table creation, ``post`` steps after it. A step
    that fails is logged and left unrecorded so the next boot retries it.
    """
    try:
        with db.connect() as conn:
            SchemaMigration.__table__.create(conn, checkfirst=True)
        applied = applied_versions(db)
    except SQLAlchemyError as e:
        logger.critical("Could not create migration history: %s", e)
        raise SchemaError() from e

    done = _run_phase(db, "pre", migrations, applied)

    try:
        with db.connect() as conn:
            Base.metadata.create_all(conn, checkfirst=True)
    except SQLAlchemyError as e:
        logger.critical("Could not create tables: %s", e)
        raise SchemaError() from e

    done += _run_phase(db, "post", migrations, applied)
    if done:
        logger.info("Schema ready; applied %s", ", ".join(done))
    return done


def rollback_migration(db: Database, version: int, migrations: List[Migration] = MIGRATIONS) -> None:
    migration = next((m for m in migrations if m.version == version), None)
    if migration is None:
        raise MigrationError(f"Unknown migration {version}")
    if migration.downgrade is None:
        raise MigrationError(f"Migration {version:03d} {migration.name} is irreversible")
    if version not in applied_versions(db):
        raise MigrationError(f"Migration {version:03d} {migration.name} is not applied")
    try:
        with db.connect() as conn:
            migration.downgrade(conn)
            conn.execute(delete(SchemaMigration).where(SchemaMigration.version == version))
    except SQLAlchemyError as e:
        raise MigrationError(f"Rollback of {version:03d} {migration.name} failed") from e
    logger.info("Rolled back migration %03d %s", version, migration.name)
