"""Shared pytest fixtures: an in-memory remote store behind httpx.MockTransport."""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from models.schemas import ExerciseRecord, TokenPair
from models.state_store import compute_complete_percent
from services.auth_pipeline import AuthenticatedRequestPipeline
from services.sync_engine import WorkoutSyncEngine

BASE_URL = "http://remote.test/api"
FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRemoteStore:
    """
    Minimal remote store: token auth, exercise status updates, plan generation.
    Knobs on the instance script failures and hold requests in flight.
    """

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.valid_tokens = {"access-0"}
        self.refresh_tokens = {"refresh-0"}
        self.issued = 0
        self.refresh_calls = 0
        self.refresh_status: Optional[int] = None
        self.update_calls: List[Dict[str, Any]] = []
        self.update_status: Optional[int] = None
        self.update_detail = "Server error"
        self.update_gate: Optional[asyncio.Event] = None
        self.update_arrived: Optional[asyncio.Event] = None
        self.hold_rejected = 0
        self.rejected_arrivals = 0
        self.rejected_gate: Optional[asyncio.Event] = None
        self.plan_response: Optional[httpx.Response] = None
        self.requests: List[str] = []
        self.offline = False

    def add_record(self, **fields) -> Dict[str, Any]:
        record = ExerciseRecord(**fields).model_dump()
        record.pop("lastModifiedAt")
        self.records[record["exerciseId"]] = record
        return record

    def expire_access_tokens(self):
        self.valid_tokens.clear()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        path = request.url.path[len("/api"):]
        self.requests.append(f"{request.method} {path}")
        body = json.loads(request.content) if request.content else None

        if path == "/auth/login":
            if body.get("password") != "secret":
                return httpx.Response(401, json={"detail": "Invalid credentials"})
            return httpx.Response(200, json=self._issue_tokens())

        if path == "/auth/refresh":
            self.refresh_calls += 1
            await asyncio.sleep(0)
            if self.refresh_status is not None:
                return httpx.Response(self.refresh_status, json={"detail": "Refresh unavailable"})
            if body.get("refreshToken") not in self.refresh_tokens:
                return httpx.Response(401, json={"detail": "Refresh token expired"})
            self.refresh_tokens.discard(body["refreshToken"])
            return httpx.Response(200, json=self._issue_tokens())

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.valid_tokens:
            await self._hold_rejected()
            return httpx.Response(401, json={"detail": "Token expired"})

        if request.method == "GET" and path == "/exercises":
            day = request.url.params.get("date")
            return httpx.Response(200, json=[r for r in self.records.values() if r["day"] == day])

        if request.method == "POST" and path.startswith("/exercises/") and path.endswith("/status"):
            exercise_id = path[len("/exercises/"):-len("/status")]
            return await self._update_status(exercise_id, body)

        if request.method == "POST" and path == "/plans/generate":
            if self.plan_response is not None:
                return self.plan_response
            return httpx.Response(200, json=default_plan())

        return httpx.Response(404, json={"detail": f"No route {path}"})

    def _issue_tokens(self) -> Dict[str, Any]:
        self.issued += 1
        access, refresh = f"access-{self.issued}", f"refresh-{self.issued}"
        self.valid_tokens = {access}
        self.refresh_tokens.add(refresh)
        expires = FIXED_NOW + timedelta(hours=1)
        return {"accessToken": access, "refreshToken": refresh, "expiresAt": expires.isoformat()}

    async def _hold_rejected(self):
        # Park stale-token requests until hold_rejected of them arrived together
        if not self.hold_rejected:
            return
        self.rejected_arrivals += 1
        if self.rejected_arrivals >= self.hold_rejected:
            self.rejected_gate.set()
        await self.rejected_gate.wait()

    async def _update_status(self, exercise_id: str, patch: Dict[str, Any]) -> httpx.Response:
        self.update_calls.append({"exerciseId": exercise_id, "patch": dict(patch)})
        if self.update_arrived is not None:
            self.update_arrived.set()
        if self.update_gate is not None:
            await self.update_gate.wait()
        if self.update_status is not None:
            return httpx.Response(self.update_status, json={"detail": self.update_detail})

        record = self.records.get(exercise_id)
        if record is None:
            if not exercise_id.startswith("local-"):
                return httpx.Response(404, json={"detail": "Exercise not found"})
            record = {"exerciseId": f"ex-{len(self.records) + 100}", "name": "", "day": None,
                      "totalSets": 5, "totalReps": 50, "completedSets": 0, "completedReps": 0,
                      "completePercent": 0, "completedByUser": False}
            self.records[record["exerciseId"]] = record

        for field in ("completedSets", "completedReps", "completedByUser"):
            if field in patch:
                record[field] = patch[field]
        record["completePercent"] = compute_complete_percent(
            record["completedReps"], record["totalReps"], record["completedByUser"]
        )
        return httpx.Response(200, json=record)


def default_plan() -> Dict[str, Any]:
    return {
        "planId": "plan-1",
        "title": "Strength base",
        "days": [
            {
                "day": "2026-10-20",
                "focus": "Upper body",
                "exercises": [
                    {"name": "Push-up", "sets": 3, "reps": 12},
                    {"exerciseId": "ex-9", "name": "Pull-up", "sets": 4, "reps": 6},
                ],
            }
        ],
    }


async def record_sleep(delays: List[float], delay: float):
    delays.append(delay)
    await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def server() -> FakeRemoteStore:
    store = FakeRemoteStore()
    store.add_record(exerciseId="ex-1", name="Squat", day="2026-10-19", totalSets=5, totalReps=50)
    store.add_record(exerciseId="ex-2", name="Bench press", day="2026-10-19", totalSets=4, totalReps=32)
    return store


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_pipeline(server, sleeps):
    def factory(logged_in: bool = True, expires_at: Optional[datetime] = None,
                now: datetime = FIXED_NOW) -> AuthenticatedRequestPipeline:
        pipeline = AuthenticatedRequestPipeline(
            base_url=BASE_URL,
            transport=httpx.MockTransport(server.handler),
            sleep=lambda delay: record_sleep(sleeps, delay),
            now=lambda: now,
            max_attempts=3,
            base_delay=0.5,
            max_delay=8.0,
        )
        if logged_in:
            pipeline.open_session(TokenPair(
                accessToken="access-0",
                refreshToken="refresh-0",
                expiresAt=expires_at or FIXED_NOW + timedelta(hours=1),
            ))
        return pipeline
    return factory


@pytest.fixture
def make_engine(make_pipeline, clock):
    def factory(**pipeline_options) -> WorkoutSyncEngine:
        return WorkoutSyncEngine(
            make_pipeline(**pipeline_options), clock=clock, sync_interval=15.0, sync_max_attempts=5,
        )
    return factory


@pytest.fixture
def engine(make_engine, server) -> WorkoutSyncEngine:
    """Engine with the server's day already loaded locally"""
    sync_engine = make_engine()
    sync_engine.store.load(
        ExerciseRecord(**record) for record in server.records.values()
    )
    return sync_engine
