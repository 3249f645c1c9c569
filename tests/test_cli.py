import contextlib
import io
import unittest
from unittest.mock import MagicMock, patch

from archiver.cli import build_arg_parser, build_config, main
from archiver.config import ConfigurationError

BASE_ARGS = ["--url", "http://analytics.example.org/", "--db-url", "sqlite://"]


class BuildConfigTestCase(unittest.TestCase):
    def _config(self, *extra: str):
        args = build_arg_parser().parse_args([*BASE_ARGS, *extra])
        return build_config(args)

    def test_defaults(self) -> None:
        config = self._config()

        self.assertEqual(config.api_root(), "http://analytics.example.org/index.php")
        self.assertIsNone(config.force_all_periods)
        self.assertEqual(config.today_archive_ttl, 150)
        self.assertEqual(config.periods_to_process(), ("day", "week", "month", "year"))
        self.assertTrue(config.check_api_url)

    def test_site_lists_and_periods(self) -> None:
        config = self._config(
            "--force-idsites", "3, 1,3",
            "--skip-idsites", "7",
            "--force-periods", "Week,day",
            "--concurrent-requests-per-website", "0",
            "--skip-url-check",
            "--testmode",
        )

        self.assertEqual(config.force_idsites, (3, 1))
        self.assertEqual(config.skip_idsites, (7,))
        self.assertEqual(config.periods_to_process(), ("day", "week"))
        self.assertEqual(config.consumer.max_concurrent_requests, 1)
        self.assertFalse(config.check_api_url)
        self.assertTrue(config.testmode)

    def test_force_all_periods_with_and_without_value(self) -> None:
        self.assertIs(self._config("--force-all-periods").force_all_periods, True)
        self.assertEqual(self._config("--force-all-periods", "86400").force_all_periods, 86400)

    def test_concurrency_limit_is_documented_as_process_wide(self) -> None:
        help_text = " ".join(build_arg_parser().format_help().split())

        self.assertIn("across all websites", help_text)

    def test_force_all_periods_zero_keeps_ttls(self) -> None:
        self.assertIsNone(self._config("--force-all-periods", "0").force_all_periods)
        self.assertIsNone(self._config("--force-all-periods=-5").force_all_periods)

    def test_segments_from_command_line(self) -> None:
        config = self._config("--segment", "browserCode==FF", "--segment", "browserCode==FF", "--segment", "x==1")

        self.assertEqual(config.segments.all_sites, ("browserCode==FF", "x==1"))

    def test_invalid_values_are_configuration_errors(self) -> None:
        for extra in (
            ("--force-date-range", "2012-01-01"),
            ("--force-date-last-n", "0"),
            ("--force-periods", "decade"),
            ("--force-idsites", "1,a"),
            ("--force-all-periods", "soon"),
            ("--today-ttl", "-1"),
        ):
            with self.subTest(extra=extra):
                with self.assertRaises(ConfigurationError):
                    self._config(*extra)


class MainTestCase(unittest.TestCase):
    def test_bad_date_range_exits_before_running(self) -> None:
        stderr = io.StringIO()
        with patch("archiver.cli.CronArchiver") as archiver_cls, contextlib.redirect_stderr(stderr):
            with self.assertRaises(SystemExit) as ctx:
                main([*BASE_ARGS, "--force-date-range", "2012-01-01,2012-13"])

        self.assertEqual(ctx.exception.code, 2)
        self.assertIn("--force-date-range", stderr.getvalue())
        archiver_cls.assert_not_called()

    @patch("archiver.cli.CronArchiver")
    def test_exit_status_comes_from_the_archiver(self, archiver_cls: MagicMock) -> None:
        archiver_cls.return_value.main.return_value = 1

        status = main([*BASE_ARGS, "--skip-url-check"])

        self.assertEqual(status, 1)
        config, session_factory = archiver_cls.call_args.args
        self.assertFalse(config.check_api_url)
        self.assertEqual(config.db_url, "sqlite://")

    @patch("archiver.cli.CronArchiver")
    def test_configuration_error_during_run_fails(self, archiver_cls: MagicMock) -> None:
        archiver_cls.return_value.main.side_effect = ConfigurationError("not a reporting API")

        with self.assertLogs("archiver.cli", level="ERROR"):
            self.assertEqual(main(BASE_ARGS), 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
