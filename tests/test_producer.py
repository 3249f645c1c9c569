import itertools
import unittest
from urllib.parse import parse_qs, urlsplit

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from archiver.config import ArchiveConfig, SegmentConfig
from archiver.counters import CounterRegistry
from archiver.dates import DateRangePolicy
from archiver.invalidation import InvalidatedSites
from archiver.jobs import ArchiveJob
from archiver.options import DAY_CLASS, OptionStore, ProgressStore
from archiver.producer import JobProducer
from archiver.queue import DatabaseJobQueue
from archiver.segments import SegmentProvider
from archiver.sites import SiteInfo
from archiver.state import RunState
from archiver.ttl import TtlPolicy, TtlSettings
from models import Base

NOW = 1_700_000_000.0
DAY = 86400


def _session_factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


class StaticSites:
    def __init__(self, created_days_ago: dict[int, int]) -> None:
        self._created = created_days_ago

    def get_site(self, site_id: int):
        if site_id not in self._created:
            return None
        return SiteInfo(site_id=site_id, created_at=NOW - self._created[site_id] * DAY, timezone="UTC")


class JobProducerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = _session_factory()
        self.options = OptionStore(self.session_factory)
        self.progress = ProgressStore(self.options)
        self.invalidated = InvalidatedSites(self.options)
        self.counters = CounterRegistry(self.session_factory, "CronArchive")
        ticks = itertools.count(NOW)
        self.queue = DatabaseJobQueue(self.session_factory, "CronArchive", time_source=lambda: next(ticks))
        self.state = RunState()

    def _producer(self, config: ArchiveConfig | None = None, **ttl_settings) -> JobProducer:
        config = config or ArchiveConfig(base_url="http://analytics.example.org/", token_auth="secret")
        self.ttl = TtlPolicy(
            TtlSettings(**{"today_ttl": 150, "periods_ttl": 3600, **ttl_settings}),
            self.progress,
            invalidated_site_ids=self.invalidated.site_ids(),
            time_source=lambda: NOW,
        )
        return JobProducer(
            config,
            queue=self.queue,
            counters=self.counters,
            ttl=self.ttl,
            dates=DateRangePolicy(
                force_date_range=config.force_date_range,
                force_date_last_n=config.force_date_last_n,
                time_source=lambda: NOW,
            ),
            progress=self.progress,
            invalidated=self.invalidated,
            sites=StaticSites({5: 100, 6: 3}),
            segments=SegmentProvider(config.segments),
            time_source=lambda: NOW,
        )

    def _queued_jobs(self) -> list[ArchiveJob]:
        return [ArchiveJob.from_url(job.url) for job in self.queue.claim(100)]

    def test_day_job_is_queued_with_counters(self) -> None:
        self.progress.set(5, DAY_CLASS, NOW - 3 * DAY)
        producer = self._producer()

        queued = producer.queue_day_job(5, self.state)

        self.assertEqual(queued, 1)
        self.assertEqual(self._queued_jobs(), [ArchiveJob(site_id=5, period="day", date="last5")])
        self.assertEqual(self.counters.active_requests(5).get(), 1)
        self.assertEqual(self.counters.failed_requests(5).get(), 1)
        self.assertEqual(self.state.requests, 1)

    def test_request_url_targets_api_root(self) -> None:
        producer = self._producer()

        producer.queue_day_job(6, self.state)
        url = self.queue.claim(1)[0].url

        self.assertTrue(url.startswith("http://analytics.example.org/index.php?"))
        params = parse_qs(urlsplit(url).query)
        self.assertEqual(params["token_auth"], ["secret"])
        self.assertEqual(params["date"], ["last5"])

    def test_skip_idsites_and_invalid_ids_are_not_queued(self) -> None:
        config = ArchiveConfig(base_url="http://analytics.example.org/", skip_idsites=(5,))
        producer = self._producer(config)

        self.assertEqual(producer.queue_day_job(5, self.state), 0)
        self.assertEqual(producer.queue_day_job(0, self.state), 0)
        self.assertEqual(producer.queue_day_job(-3, self.state), 0)

        self.assertEqual(self.state.skipped, 3)
        self.assertEqual(self.queue.peek(), 0)

    def test_recent_day_archive_is_skipped(self) -> None:
        self.progress.set(5, DAY_CLASS, NOW - 60)
        producer = self._producer()

        self.assertEqual(producer.queue_day_job(5, self.state), 0)

        self.assertEqual(self.state.skipped_day_archives, 1)
        self.assertEqual(self.state.skipped, 1)
        self.assertEqual(self.counters.active_requests(5).get(), 0)

    def test_invalidated_site_is_reprocessed_from_creation(self) -> None:
        self.progress.set(5, DAY_CLASS, NOW - DAY)
        self.invalidated.add([5, 6])
        producer = self._producer()

        producer.queue_day_job(5, self.state)

        self.assertEqual(self._queued_jobs(), [ArchiveJob(site_id=5, period="day", date="last52")])
        self.assertEqual(self.invalidated.site_ids(), [6])

    def test_day_disabled_queues_periods_directly(self) -> None:
        config = ArchiveConfig(base_url="http://analytics.example.org/", force_periods=("month",))
        producer = self._producer(config)

        queued = producer.queue_day_job(6, self.state)

        self.assertEqual(queued, 1)
        self.assertEqual(self._queued_jobs(), [ArchiveJob(site_id=6, period="month", date="last5")])
        self.assertEqual(self.counters.failed_requests(6).get(), 1)

    def test_period_and_segment_jobs(self) -> None:
        config = ArchiveConfig(
            base_url="http://analytics.example.org/",
            segments=SegmentConfig(all_sites=("browserCode==FF",)),
        )
        producer = self._producer(config)

        queued = producer.queue_period_and_segment_jobs(6, self.state)

        jobs = self._queued_jobs()
        self.assertEqual(queued, 7)
        self.assertEqual(
            [(job.period, job.segment) for job in jobs],
            [
                ("day", "browserCode==FF"),
                ("week", None),
                ("week", "browserCode==FF"),
                ("month", None),
                ("month", "browserCode==FF"),
                ("year", None),
                ("year", "browserCode==FF"),
            ],
        )
        self.assertEqual(self.counters.failed_requests(6).get(), 7)
        self.assertEqual(self.counters.active_requests(6).get(), 7)
        self.assertEqual(self.state.requests, 7)

    def test_forced_date_range_is_used_for_every_job(self) -> None:
        config = ArchiveConfig(
            base_url="http://analytics.example.org/",
            force_date_range="2012-01-01,2012-03-15",
        )
        producer = self._producer(config)

        producer.queue_period_and_segment_jobs(5, self.state)

        self.assertEqual({job.date for job in self._queued_jobs()}, {"2012-01-01,2012-03-15"})

    def test_unknown_site_uses_current_time_as_creation(self) -> None:
        producer = self._producer()

        with self.assertLogs("archiver.producer", level="WARNING"):
            producer.queue_day_job(77, self.state)

        self.assertEqual(self._queued_jobs(), [ArchiveJob(site_id=77, period="day", date="last2")])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
