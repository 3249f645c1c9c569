import unittest
from urllib.parse import parse_qs, urlsplit

from archiver.jobs import ArchiveJob, job_key

API_ROOT = "http://analytics.example.org/index.php"


class ArchiveJobTestCase(unittest.TestCase):
    def test_url_contains_every_request_parameter(self) -> None:
        job = ArchiveJob(site_id=5, period="week", date="last10")

        url = job.to_url(API_ROOT, "secret", testmode=True)
        parts = urlsplit(url)
        params = parse_qs(parts.query)

        self.assertEqual(f"{parts.scheme}://{parts.netloc}{parts.path}", API_ROOT)
        self.assertEqual(params["module"], ["API"])
        self.assertEqual(params["method"], ["API.get"])
        self.assertEqual(params["idSite"], ["5"])
        self.assertEqual(params["period"], ["week"])
        self.assertEqual(params["date"], ["last10"])
        self.assertEqual(params["format"], ["json"])
        self.assertEqual(params["token_auth"], ["secret"])
        self.assertEqual(params["trigger"], ["archivephp"])
        self.assertEqual(params["testmode"], ["1"])
        self.assertNotIn("segment", params)

    def test_date_range_comma_is_kept_readable(self) -> None:
        job = ArchiveJob(site_id=1, period="day", date="2012-01-01,2012-03-15")

        self.assertIn("date=2012-01-01,2012-03-15", job.to_url(API_ROOT, "t"))

    def test_segment_is_url_encoded_and_recovered(self) -> None:
        job = ArchiveJob(site_id=3, period="month", date="last2").with_segment("browserCode==FF;country==fr")

        url = job.to_url(API_ROOT, "t")

        self.assertNotIn("browserCode==FF;", url)
        self.assertEqual(ArchiveJob.from_url(url), job)

    def test_from_url_accepts_bare_query_string(self) -> None:
        job = ArchiveJob.from_url("?idSite=9&period=year&date=last7")

        self.assertEqual(job, ArchiveJob(site_id=9, period="year", date="last7"))
        self.assertFalse(job.is_day)

    def test_from_url_rejects_unattributable_results(self) -> None:
        self.assertIsNone(ArchiveJob.from_url(f"{API_ROOT}?period=day&date=last2"))
        self.assertIsNone(ArchiveJob.from_url(f"{API_ROOT}?idSite=abc&period=day&date=last2"))
        self.assertIsNone(ArchiveJob.from_url(f"{API_ROOT}?idSite=1&period=range&date=last2"))
        self.assertIsNone(ArchiveJob.from_url(f"{API_ROOT}?idSite=1&period=day"))

    def test_job_key_is_stable_and_fixed_size(self) -> None:
        url = ArchiveJob(site_id=1, period="day", date="last2").to_url(API_ROOT, "t")

        self.assertEqual(job_key(url), job_key(url))
        self.assertEqual(len(job_key(url)), 64)
        self.assertNotEqual(job_key(url), job_key(url + "&segment=x"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
