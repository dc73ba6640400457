# ruff: noqa: INP001
"""Pytest configuration shared across backend tests."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Deterministic settings during import-time initialization, regardless of shell env.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_AUTO_MIGRATE"] = "false"
os.environ["RQ_REDIS_URL"] = "redis://localhost:6379/15"
os.environ["RQ_DISPATCH_THROTTLE_SECONDS"] = "0"

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from app import models  # noqa: E402,F401
from app.core.config import settings  # noqa: E402
from app.models.proposals import Proposal  # noqa: E402
from app.models.staff_rates import StaffRate  # noqa: E402
from app.models.voter_grants import VoterGrant  # noqa: E402
from app.services.rates import DEFAULT_HOURLY_RATES, DISPLAY_NAMES  # noqa: E402

RATES_FROM = date(2020, 1, 1)


class FakeRedis:
    """In-memory stand-in for the list and sorted-set calls the queue makes."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    def lpush(self, key: str, *values: str) -> int:
        bucket = self.lists.setdefault(key, [])
        for value in values:
            bucket.insert(0, value)
        return len(bucket)

    def rpop(self, key: str) -> str | None:
        bucket = self.lists.get(key) or []
        if not bucket:
            return None
        return bucket.pop()

    def brpop(self, keys: list[str], timeout: float = 0) -> tuple[str, str] | None:
        del timeout
        for key in keys:
            value = self.rpop(key)
            if value is not None:
                return key, value
        return None

    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrangebyscore(
        self,
        key: str,
        low: Any,
        high: Any,
        start: int = 0,
        num: int | None = None,
        withscores: bool = False,
    ) -> list[Any]:
        lo = float("-inf") if low == "-inf" else float(low)
        hi = float("inf") if high == "+inf" else float(high)
        items = sorted(
            ((member, score) for member, score in self.zsets.get(key, {}).items()),
            key=lambda item: item[1],
        )
        selected = [item for item in items if lo <= item[1] <= hi]
        if num is not None:
            selected = selected[start : start + num]
        if withscores:
            return selected
        return [member for member, _ in selected]

    def zrem(self, key: str, *members: str) -> int:
        bucket = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if bucket.pop(member, None) is not None:
                removed += 1
        return removed

    def queued(self, key: str) -> list[str]:
        return list(reversed(self.lists.get(key, [])))

    def notification_events(self) -> list[str]:
        """Event types queued for governance notifications, oldest first."""
        return [
            json.loads(raw)["payload"]["event_type"]
            for raw in self.queued(settings.rq_queue_name)
        ]


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()

    def _fake_client(redis_url: str | None = None) -> FakeRedis:
        del redis_url
        return fake

    monkeypatch.setattr("app.services.queue._redis_client", _fake_client)
    return fake


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as db:
        yield db


@pytest_asyncio.fixture
async def rates(session: AsyncSession) -> None:
    """Install the default rate card effective from 2020-01-01."""
    for order, (grade, rate) in enumerate(DEFAULT_HOURLY_RATES.items()):
        session.add(
            StaffRate(
                staff_level=grade,
                display_name=DISPLAY_NAMES[grade],
                hourly_rate=rate,
                display_order=order,
                effective_from=RATES_FROM,
            ),
        )
    await session.commit()


@pytest.fixture
def make_proposal(session: AsyncSession) -> Callable[..., Awaitable[Proposal]]:
    """Insert a proposal directly, already submitted unless told otherwise."""

    async def _make(**overrides: Any) -> Proposal:
        values: dict[str, Any] = {
            "title": "Manual reconciliation of client ledgers",
            "solution": "Document extraction assistant",
            "team": "audit",
            "submitted_by": uuid4(),
            "cost": 3000.0,
            "time_savings": [{"staff_level": "admin", "hours_per_week": 1.0}],
            "risk_score": 2,
            "data_classification": "internal",
            "escalation_triggers": [],
            "status": "submitted",
            "oversight_status": "pending_review",
        }
        values.update(overrides)
        proposal = Proposal(**values)
        session.add(proposal)
        await session.commit()
        await session.refresh(proposal)
        return proposal

    return _make


@pytest.fixture
def grant_voters(session: AsyncSession) -> Callable[[str, int], Awaitable[list[UUID]]]:
    """Grant ``count`` fresh identities a voting capability."""

    async def _grant(capability: str, count: int) -> list[UUID]:
        user_ids = [uuid4() for _ in range(count)]
        for index, user_id in enumerate(user_ids):
            session.add(
                VoterGrant(
                    user_id=user_id,
                    capability=capability,
                    display_name=f"{capability}-{index}",
                ),
            )
        await session.commit()
        return user_ids

    return _grant
