import importlib.util
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from archiver.invalidation import InvalidatedSites
from archiver.options import OptionStore

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "invalidate_reports.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("invalidate_reports", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class InvalidateReportsScriptTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.script = _load_script()
        self._tmp = TemporaryDirectory()
        self.db_url = f"sqlite:///{Path(self._tmp.name) / 'archiver.db'}"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _stored_ids(self) -> list[int]:
        engine = create_engine(self.db_url)
        try:
            return InvalidatedSites(OptionStore(sessionmaker(bind=engine))).site_ids()
        finally:
            engine.dispose()

    def test_sites_are_added_once(self) -> None:
        self.assertEqual(self.script.main(["--db-url", self.db_url, "--idsites", "3,4"]), 0)
        self.assertEqual(self.script.main(["--db-url", self.db_url, "--idsites", "4,5"]), 0)

        self.assertEqual(self._stored_ids(), [3, 4, 5])

    def test_dry_run_stores_nothing(self) -> None:
        with self.assertLogs(self.script.LOGGER.name, level="INFO") as logs:
            status = self.script.main(["--db-url", self.db_url, "--idsites", "3", "--dry-run"])

        self.assertEqual(status, 0)
        self.assertTrue(any("[DRY-RUN]" in line for line in logs.output))
        self.assertEqual(self._stored_ids(), [])

    def test_missing_site_ids(self) -> None:
        self.assertEqual(self.script.main(["--db-url", self.db_url]), 2)

    def test_invalid_site_id_aborts(self) -> None:
        with self.assertRaises(SystemExit):
            self.script.main(["--db-url", self.db_url, "--idsites", "3,x"])

    def test_parse_site_ids(self) -> None:
        self.assertEqual(self.script.parse_site_ids(" 3, 1,3,"), [3, 1])
        self.assertEqual(self.script.parse_site_ids(None), [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
