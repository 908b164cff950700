"""Shared heartbeat storage for scheduler leader election."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Protocol

from sqlalchemy import DateTime, String, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

DEFAULT_SCOPE = "scheduler"


@dataclass(frozen=True, slots=True)
class Heartbeat:
    instance_id: str
    timestamp: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.timestamp).total_seconds()

    def is_expired(self, now: datetime, timeout_seconds: float) -> bool:
        return self.age_seconds(now) >= timeout_seconds


class HeartbeatStore(Protocol):
    def read(self, scope: str = DEFAULT_SCOPE) -> Heartbeat | None: ...

    def write(self, heartbeat: Heartbeat, scope: str = DEFAULT_SCOPE) -> None: ...

    def compare_and_swap(
        self,
        expected: Heartbeat | None,
        heartbeat: Heartbeat,
        scope: str = DEFAULT_SCOPE,
    ) -> bool: ...

    def clear(self, instance_id: str, scope: str = DEFAULT_SCOPE) -> bool: ...


class InMemoryHeartbeatStore:
    """Process-local store; share one instance between elections to simulate several runtimes."""

    def __init__(self) -> None:
        self._beats: dict[str, Heartbeat] = {}
        self._lock = Lock()

    def read(self, scope: str = DEFAULT_SCOPE) -> Heartbeat | None:
        return self._beats.get(scope)

    def write(self, heartbeat: Heartbeat, scope: str = DEFAULT_SCOPE) -> None:
        with self._lock:
            self._beats[scope] = heartbeat

    def compare_and_swap(
        self,
        expected: Heartbeat | None,
        heartbeat: Heartbeat,
        scope: str = DEFAULT_SCOPE,
    ) -> bool:
        with self._lock:
            if self._beats.get(scope) != expected:
                return False
            self._beats[scope] = heartbeat
            return True

    def clear(self, instance_id: str, scope: str = DEFAULT_SCOPE) -> bool:
        with self._lock:
            current = self._beats.get(scope)
            if current is None or current.instance_id != instance_id:
                return False
            del self._beats[scope]
            return True


class HeartbeatBase(DeclarativeBase):
    pass


class SchedulerHeartbeatORM(HeartbeatBase):
    __tablename__ = "scheduler_heartbeats"

    scope: Mapped[str] = mapped_column(String(64), primary_key=True)
    instance_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # naive UTC so equality checks behave the same on every backend
    beat_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_heartbeat(row: SchedulerHeartbeatORM) -> Heartbeat:
    return Heartbeat(instance_id=row.instance_id, timestamp=row.beat_at.replace(tzinfo=timezone.utc))


class SqlHeartbeatStore:
    """Heartbeat row per scope in a SQL database, with atomic conditional claims."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def create_schema(bind) -> None:
        HeartbeatBase.metadata.create_all(bind)

    def read(self, scope: str = DEFAULT_SCOPE) -> Heartbeat | None:
        with self._session_factory() as session:
            row = session.get(SchedulerHeartbeatORM, scope)
            return _to_heartbeat(row) if row is not None else None

    def write(self, heartbeat: Heartbeat, scope: str = DEFAULT_SCOPE) -> None:
        with self._session_factory() as session:
            row = session.get(SchedulerHeartbeatORM, scope)
            if row is None:
                session.add(
                    SchedulerHeartbeatORM(
                        scope=scope,
                        instance_id=heartbeat.instance_id,
                        beat_at=_to_naive_utc(heartbeat.timestamp),
                    )
                )
            else:
                row.instance_id = heartbeat.instance_id
                row.beat_at = _to_naive_utc(heartbeat.timestamp)
            session.commit()

    def compare_and_swap(
        self,
        expected: Heartbeat | None,
        heartbeat: Heartbeat,
        scope: str = DEFAULT_SCOPE,
    ) -> bool:
        with self._session_factory() as session:
            if expected is None:
                session.add(
                    SchedulerHeartbeatORM(
                        scope=scope,
                        instance_id=heartbeat.instance_id,
                        beat_at=_to_naive_utc(heartbeat.timestamp),
                    )
                )
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return False
                return True
            result = session.execute(
                update(SchedulerHeartbeatORM)
                .where(
                    SchedulerHeartbeatORM.scope == scope,
                    SchedulerHeartbeatORM.instance_id == expected.instance_id,
                    SchedulerHeartbeatORM.beat_at == _to_naive_utc(expected.timestamp),
                )
                .values(instance_id=heartbeat.instance_id, beat_at=_to_naive_utc(heartbeat.timestamp))
            )
            session.commit()
            return result.rowcount == 1

    def clear(self, instance_id: str, scope: str = DEFAULT_SCOPE) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(SchedulerHeartbeatORM).where(
                    SchedulerHeartbeatORM.scope == scope,
                    SchedulerHeartbeatORM.instance_id == instance_id,
                )
            )
            session.commit()
            return result.rowcount == 1

