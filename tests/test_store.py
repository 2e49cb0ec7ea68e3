from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from reportwatch.store import ACTIVE_JOBS_KEY, SqliteActiveJobRepository, StateStore


class StoreTest(unittest.TestCase):
    def test_set_and_get(self) -> None:
        with TemporaryDirectory() as temp_dir:
            store = StateStore(Path(temp_dir) / "reportwatch.db")
            store.init_schema()
            self.assertEqual(store.get("missing", []), [])

            store.set("answer", {"value": 42})
            store.set("answer", {"value": 43})
            self.assertEqual(store.get("answer"), {"value": 43})
            store.close()

    def test_corrupt_value_reads_as_default(self) -> None:
        with TemporaryDirectory() as temp_dir:
            store = StateStore(Path(temp_dir) / "reportwatch.db")
            store.init_schema()
            store.conn.execute(
                "INSERT INTO kv_state(key, value_json, updated_at) VALUES (?, ?, ?)",
                (ACTIVE_JOBS_KEY, "{not json", "2025-01-01T00:00:00+00:00"),
            )
            store.conn.commit()
            self.assertEqual(SqliteActiveJobRepository(store).load(), [])
            store.close()

    def test_active_jobs_survive_reopen(self) -> None:
        with TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "reportwatch.db"
            store = StateStore(db_path)
            store.init_schema()
            SqliteActiveJobRepository(store).save(["r1", "r2"])
            store.close()

            reopened = StateStore(db_path)
            reopened.init_schema()
            self.assertEqual(SqliteActiveJobRepository(reopened).load(), ["r1", "r2"])
            reopened.close()

    def test_load_drops_malformed_entries(self) -> None:
        with TemporaryDirectory() as temp_dir:
            store = StateStore(Path(temp_dir) / "reportwatch.db")
            store.init_schema()
            store.set(ACTIVE_JOBS_KEY, ["r1", 7, "", "r1", "r2"])
            self.assertEqual(SqliteActiveJobRepository(store).load(), ["r1", "r2"])
            store.set(ACTIVE_JOBS_KEY, {"r1": True})
            self.assertEqual(SqliteActiveJobRepository(store).load(), [])
            store.close()


if __name__ == "__main__":
    unittest.main()
