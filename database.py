"""
Database helpers for the credential service: driver URL normalisation,
waiting for the database at startup and idempotent schema creation.
"""
import logging
import time

from sqlalchemy import text, inspect as sa_inspect

REQUIRED_TABLES = ('user', 'institution', 'institution_user', 'stored_file', 'certificate', 'activity_log')


def normalize_pg_url_for_sqlalchemy(url: str) -> str:
    """Normalize PostgreSQL URL for SQLAlchemy driver."""
    if not isinstance(url, str) or not url:
        return url
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    if not url.startswith('postgresql://'):
        return url
    try:
        import psycopg  # noqa: F401
        driver = 'psycopg'
    except ImportError:
        try:
            import psycopg2  # noqa: F401
            driver = 'psycopg2'
        except ImportError:
            driver = None
    if driver:
        return url.replace('postgresql://', f'postgresql+{driver}://', 1)
    return url


def wait_for_db(engine, seconds: int = 20) -> bool:
    """Try to connect to the DB for up to `seconds`. Returns True if reachable, False otherwise."""
    start = time.time()
    last_err = None
    while time.time() - start < seconds:
        try:
            with engine.connect() as conn:
                conn.execute(text('SELECT 1'))
                return True
        except Exception as e:
            last_err = e
            time.sleep(1.0)
    if last_err:
        logging.warning(f"[DB WAIT] DB not reachable after {seconds}s: {last_err}")
    return False


def missing_tables(engine):
    existing = set(sa_inspect(engine).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing]


def init_schema(app) -> bool:
    """Create any missing tables. Returns True when the schema is complete afterwards."""
    from models import db
    with app.app_context():
        if not wait_for_db(db.engine, seconds=app.config.get('DB_WAIT_SECONDS', 20)):
            return False
        missing = missing_tables(db.engine)
        if missing:
            logging.info(f"[DB] creating tables: {', '.join(missing)}")
            db.create_all()
        return not missing_tables(db.engine)
