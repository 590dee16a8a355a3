"""Single-flight tracking of in-progress analyses."""

from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ..errors import TrackerError
from ..models import AnalysisKey, AnalysisRecord, AnalysisRequest, AnalysisStatus, Outcome

_LOGGER = logging.getLogger(__name__)


class Role(str, Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


class Flight:
    """The shared in-flight execution for one key.

    Leader and followers subscribe to the same flight and are woken together
    by a single ``resolve``. Everyone observes the identical ``Outcome``
    object.
    """

    def __init__(self, record: AnalysisRecord) -> None:
        self.record = record
        self._done = threading.Event()
        self._outcome: Outcome | None = None
        self._subscribers: set[int] = set()
        self._lock = threading.Lock()

    @property
    def key(self) -> AnalysisKey:
        return self.record.key

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.add(token)

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            if token not in self._subscribers:
                return False
            self._subscribers.discard(token)
            return True

    def is_subscribed(self, token: int) -> bool:
        with self._lock:
            return token in self._subscribers

    def resolve(self, outcome: Outcome) -> None:
        with self._lock:
            if self._outcome is not None:
                raise TrackerError(f"Flight {self.key} already resolved")
            self._outcome = outcome
        self._done.set()

    def wait(self, timeout: float | None = None) -> Outcome:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Timed out waiting for analysis {self.key}")
        assert self._outcome is not None
        return self._outcome


class Subscription:
    """A caller's handle on a flight. ``cancel`` only withdraws this caller."""

    def __init__(self, flight: Flight, token: int) -> None:
        self._flight = flight
        self._token = token

    @property
    def key(self) -> AnalysisKey:
        return self._flight.key

    @property
    def done(self) -> bool:
        return self._flight.done

    @property
    def cancelled(self) -> bool:
        return not self._flight.is_subscribed(self._token)

    def wait(self, timeout: float | None = None) -> Outcome:
        if self.cancelled and not self._flight.done:
            raise TrackerError(f"Subscription to {self.key} was cancelled")
        return self._flight.wait(timeout)

    def cancel(self) -> bool:
        removed = self._flight.unsubscribe(self._token)
        if removed:
            _LOGGER.debug("Subscriber %s left flight %s", self._token, self.key)
        return removed


@dataclass(frozen=True, slots=True)
class Membership:
    role: Role
    subscription: Subscription

    @property
    def is_leader(self) -> bool:
        return self.role is Role.LEADER


class ActiveExecutionTracker:
    """Guarantee at most one concurrent execution per :class:`AnalysisKey`.

    The first caller for a key becomes the leader and must eventually call
    :meth:`publish`; later callers join as followers on the same flight.
    Records of finished flights are kept in a bounded history so status can
    still be polled after completion.
    """

    def __init__(self, *, history_size: int = 256) -> None:
        self._lock = threading.Lock()
        self._active: dict[AnalysisKey, Flight] = {}
        self._history: OrderedDict[AnalysisKey, AnalysisRecord] = OrderedDict()
        self._history_size = history_size
        self._tokens = itertools.count(1)

    def begin_or_join(self, key: AnalysisKey, request: AnalysisRequest) -> Membership:
        token = next(self._tokens)
        with self._lock:
            flight = self._active.get(key)
            if flight is not None:
                flight.subscribe(token)
                return Membership(Role.FOLLOWER, Subscription(flight, token))
            flight = Flight(AnalysisRecord(key=key, request=request))
            flight.subscribe(token)
            self._active[key] = flight
        _LOGGER.debug("Leader %s started flight %s", token, key)
        return Membership(Role.LEADER, Subscription(flight, token))

    def mark_running(self, key: AnalysisKey) -> None:
        with self._lock:
            flight = self._require(key)
            record = flight.record
            if record.status is not AnalysisStatus.PENDING:
                raise TrackerError(f"Cannot start {key}: status is {record.status.value}")
            record.status = AnalysisStatus.RUNNING
            record.started_at = datetime.now(timezone.utc)

    def record_attempt(self, key: AnalysisKey) -> int:
        with self._lock:
            record = self._require(key).record
            if record.status is not AnalysisStatus.RUNNING:
                raise TrackerError(f"Cannot count attempt for {key}: status is {record.status.value}")
            record.attempt_count += 1
            return record.attempt_count

    def publish(self, key: AnalysisKey, outcome: Outcome) -> AnalysisRecord:
        """Resolve the flight for ``key``, wake every subscriber and clear it."""

        with self._lock:
            flight = self._active.pop(key, None)
            if flight is None:
                raise TrackerError(f"No active flight for {key}")
            record = flight.record
            record.status = AnalysisStatus.COMPLETED if outcome.ok else AnalysisStatus.FAILED
            record.completed_at = datetime.now(timezone.utc)
            record.result = outcome.result
            record.error = outcome.error
            record.subscribers = flight.subscriber_count
            self._remember(record)
        flight.resolve(outcome)
        return record.snapshot()

    def snapshot(self, key: AnalysisKey) -> AnalysisRecord | None:
        with self._lock:
            flight = self._active.get(key)
            if flight is not None:
                record = flight.record.snapshot()
                record.subscribers = flight.subscriber_count
                return record
            record = self._history.get(key)
            return record.snapshot() if record is not None else None

    def is_active(self, key: AnalysisKey) -> bool:
        with self._lock:
            return key in self._active

    def active_keys(self) -> list[AnalysisKey]:
        with self._lock:
            return list(self._active)

    def records(self) -> list[AnalysisRecord]:
        with self._lock:
            active = [flight.record.snapshot() for flight in self._active.values()]
            finished = [record.snapshot() for record in self._history.values()]
        return active + finished

    def forget(self, key: AnalysisKey) -> None:
        with self._lock:
            self._history.pop(key, None)

    def _require(self, key: AnalysisKey) -> Flight:
        flight = self._active.get(key)
        if flight is None:
            raise TrackerError(f"No active flight for {key}")
        return flight

    def _remember(self, record: AnalysisRecord) -> None:
        if self._history_size <= 0:
            return
        self._history.pop(record.key, None)
        self._history[record.key] = record
        while len(self._history) > self._history_size:
            self._history.popitem(last=False)
