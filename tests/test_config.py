import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from archiver.config import ArchiveConfig, ConfigurationError, SegmentConfig
from archiver.segments import SegmentProvider


class ArchiveConfigTestCase(unittest.TestCase):
    def test_api_root_normalisation(self) -> None:
        cases = {
            "http://example.org/analytics/": "http://example.org/analytics/index.php",
            "http://example.org/analytics": "http://example.org/analytics/index.php",
            "https://example.org/index.php": "https://example.org/index.php",
            "example.org": "http://example.org/index.php",
        }
        for base_url, expected in cases.items():
            with self.subTest(base_url=base_url):
                self.assertEqual(ArchiveConfig(base_url=base_url).api_root(), expected)

    def test_empty_url_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            ArchiveConfig(base_url=" ").api_root()

    def test_forced_periods_keep_canonical_order(self) -> None:
        config = ArchiveConfig(force_periods=("year", "day"))

        self.assertEqual(config.periods_to_process(), ("day", "year"))


class SegmentConfigTestCase(unittest.TestCase):
    def test_from_file_merges_command_line_segments(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "segments.json"
            path.write_text(
                json.dumps({"all": ["browserCode==FF", ""], "sites": {"5": ["country==fr"]}}),
                encoding="utf-8",
            )

            config = SegmentConfig.from_file(path, extra=("browserCode==FF", "visitorType==new"))

        self.assertEqual(config.all_sites, ("browserCode==FF", "visitorType==new"))
        self.assertEqual(config.per_site, {5: ("country==fr",)})

    def test_invalid_files(self) -> None:
        with TemporaryDirectory() as tmp:
            missing = Path(tmp) / "missing.json"
            broken = Path(tmp) / "broken.json"
            broken.write_text("{", encoding="utf-8")
            wrong_shape = Path(tmp) / "list.json"
            wrong_shape.write_text("[]", encoding="utf-8")
            bad_id = Path(tmp) / "bad_id.json"
            bad_id.write_text('{"sites": {"five": ["a==b"]}}', encoding="utf-8")

            for path in (missing, broken, wrong_shape, bad_id):
                with self.subTest(path=path.name):
                    with self.assertRaises(ConfigurationError):
                        SegmentConfig.from_file(path)


class SegmentProviderTestCase(unittest.TestCase):
    def test_site_segments_extend_global_ones(self) -> None:
        provider = SegmentProvider(
            SegmentConfig(all_sites=("a==1",), per_site={5: ("b==2", "a==1")})
        )

        with self.assertLogs("archiver.segments", level="INFO"):
            self.assertEqual(provider.for_site(5), ["a==1", "b==2"])
        self.assertEqual(provider.for_site(6), ["a==1"])
        self.assertEqual(provider.all_sites, ("a==1",))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
