import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Tuple, Union

from errors import ValidationError
from geo import valid_coordinates
from schemas import Congestion, Report, ReportType, Stats, TrafficSample, User

logger = logging.getLogger("state_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadWriteLock:
    """
    Shared/exclusive lock. Any number of readers, or one writer.
    A waiting writer blocks new readers so writers are not starved.
    """
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class StateStore:
    """
    Exclusive owner of users, reports and traffic samples.

    One lock guards all three collections jointly. Every value handed out
    is a copy, so callers never alias store-internal records.
    """
    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        user_ttl: timedelta = timedelta(hours=1),
        report_ttl: timedelta = timedelta(hours=24),
        traffic_ttl: timedelta = timedelta(hours=1),
    ):
        self._clock = clock
        self.user_ttl = user_ttl
        self.report_ttl = report_ttl
        self.traffic_ttl = traffic_ttl

        self._lock = ReadWriteLock()
        self._users: Dict[int, User] = {}
        self._reports: Dict[int, Report] = {}
        self._traffic: Dict[str, TrafficSample] = {}
        self._next_user_id = 1
        self._next_report_id = 1

    def now(self) -> datetime:
        return self._clock()

    # --- Users ---

    def create_user(self, name: str, lat: float, lng: float) -> User:
        """Register a position. Re-using a name creates a new user id."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("username is required")
        if not valid_coordinates(lat, lng):
            raise ValidationError(f"invalid coordinates: lat={lat}, lng={lng}")

        with self._lock.write_locked():
            user = User(
                id=self._next_user_id,
                username=name,
                lat=lat,
                lng=lng,
                last_seen=self._clock(),
            )
            self._users[user.id] = user
            self._next_user_id += 1
            return copy.deepcopy(user)

    # --- Reports ---

    def create_report(
        self,
        report_type: Union[str, ReportType],
        lat: float,
        lng: float,
        description: str,
        author_id: int,
    ) -> Report:
        try:
            rtype = ReportType(report_type)
        except ValueError:
            raise ValidationError(f"invalid report type: {report_type!r}") from None
        if not valid_coordinates(lat, lng):
            raise ValidationError(f"invalid coordinates: lat={lat}, lng={lng}")

        with self._lock.write_locked():
            report = Report(
                id=self._next_report_id,
                type=rtype,
                lat=lat,
                lng=lng,
                description=description or "",
                user_id=author_id,
                created_at=self._clock(),
                votes=1,
            )
            self._reports[report.id] = report
            self._next_report_id += 1
            return copy.deepcopy(report)

    def recent_reports(self) -> List[Report]:
        with self._lock.read_locked():
            return self._recent_reports_locked()

    def _recent_reports_locked(self) -> List[Report]:
        now = self._clock()
        return [
            copy.deepcopy(r)
            for r in self._reports.values()
            if now - r.created_at < self.report_ttl
        ]

    # --- Traffic ---

    def upsert_traffic_sample(self, key: str, sample: TrafficSample):
        with self._lock.write_locked():
            self._traffic[key] = copy.deepcopy(sample)

    def upsert_traffic_samples(self, samples: Dict[str, TrafficSample]):
        """Apply a whole simulator tick under one exclusive acquisition."""
        with self._lock.write_locked():
            for key, sample in samples.items():
                self._traffic[key] = copy.deepcopy(sample)

    def all_traffic_samples(self) -> Dict[str, TrafficSample]:
        with self._lock.read_locked():
            return copy.deepcopy(self._traffic)

    def traffic_summary(self) -> Dict[str, int]:
        summary = {level.value: 0 for level in Congestion}
        with self._lock.read_locked():
            now = self._clock()
            for sample in self._traffic.values():
                if now - sample.timestamp < self.traffic_ttl:
                    summary[Congestion(sample.congestion).value] += 1
        return summary

    # --- Queries ---

    def stats(self) -> Stats:
        with self._lock.read_locked():
            return self._stats_locked()

    def snapshot(self) -> Tuple[Stats, List[Report]]:
        """Counts and recent reports taken under one shared acquisition."""
        with self._lock.read_locked():
            return self._stats_locked(), self._recent_reports_locked()

    def _stats_locked(self) -> Stats:
        return Stats(
            users_online=len(self._users),
            total_reports=len(self._reports),
            traffic_points=len(self._traffic),
        )

    # --- Maintenance ---

    def sweep(self) -> None:
        """Drop idle users, old reports and stale traffic samples."""
        with self._lock.write_locked():
            now = self._clock()
            expired_users = [
                uid for uid, u in self._users.items()
                if now - u.last_seen > self.user_ttl
            ]
            for uid in expired_users:
                self._users.pop(uid, None)

            expired_reports = [
                rid for rid, r in self._reports.items()
                if now - r.created_at > self.report_ttl
            ]
            for rid in expired_reports:
                self._reports.pop(rid, None)

            expired_samples = [
                key for key, s in self._traffic.items()
                if now - s.timestamp > self.traffic_ttl
            ]
            for key in expired_samples:
                self._traffic.pop(key, None)

            users, reports, traffic = len(self._users), len(self._reports), len(self._traffic)

        logger.info(
            "Sweep completed. Users: %d, Reports: %d, Traffic: %d",
            users, reports, traffic,
        )

    def seed_sample_data(self):
        demo = [
            (ReportType.TRAFFIC, 14.0818, -87.2068,
             "Heavy traffic downtown", 10, 5),
            (ReportType.POLICE, 14.0900, -87.2100,
             "Police checkpoint on the north boulevard", 5, 3),
            (ReportType.ACCIDENT, 14.0750, -87.2200,
             "Minor accident at the intersection", 15, 7),
        ]
        with self._lock.write_locked():
            now = self._clock()
            for rtype, lat, lng, description, minutes_ago, votes in demo:
                report = Report(
                    id=self._next_report_id,
                    type=rtype,
                    lat=lat,
                    lng=lng,
                    description=description,
                    user_id=1,
                    created_at=now - timedelta(minutes=minutes_ago),
                    votes=votes,
                )
                self._reports[report.id] = report
                self._next_report_id += 1
        logger.info("Sample data initialized (%d reports)", len(demo))
