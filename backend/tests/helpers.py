from datetime import datetime

import database.db as db

# A Monday morning; every pipeline test runs against this wall clock.
FIXED_NOW = datetime(2026, 10, 19, 8, 30, 0)


def count_rows(db_path, table: str) -> int:
    conn = db.connect_db(db_path)
    try:
        return int(conn.execute(f"SELECT COUNT(1) FROM {table}").fetchone()[0])
    finally:
        conn.close()
