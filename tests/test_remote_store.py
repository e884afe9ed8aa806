import asyncio
import json
from datetime import date

import httpx
import pytest

from models.errors import Permanent
from models.schemas import TokenPair, UserProfile
from services.auth_pipeline import AuthenticatedRequestPipeline
from services.remote_store import RemoteStoreClient
from conftest import BASE_URL, default_plan


def test_exercises_by_day_decodes_records(make_pipeline):
    remote = RemoteStoreClient(make_pipeline())

    records = asyncio.run(remote.exercises_by_day(date(2026, 10, 19)))

    assert sorted(record.exerciseId for record in records) == ["ex-1", "ex-2"]
    assert records[0].lastModifiedAt == 0.0


def test_update_returns_server_record(make_pipeline, server):
    remote = RemoteStoreClient(make_pipeline())

    record = asyncio.run(remote.update_exercise_status("ex-1", {"completedReps": 25}))

    assert record.completedReps == 25
    assert record.completePercent == 50
    assert server.update_calls == [{"exerciseId": "ex-1", "patch": {"completedReps": 25}}]


def test_unknown_exercise_is_permanent(make_pipeline):
    remote = RemoteStoreClient(make_pipeline())

    with pytest.raises(Permanent, match="Exercise not found"):
        asyncio.run(remote.update_exercise_status("ex-404", {"completedSets": 1}))


def test_generate_plan_validates_schema(make_pipeline):
    remote = RemoteStoreClient(make_pipeline())

    plan = asyncio.run(remote.generate_plan(UserProfile(goal="strength", daysPerWeek=4)))

    assert plan.planId == "plan-1"
    assert [exercise.name for exercise in plan.days[0].exercises] == ["Push-up", "Pull-up"]


def test_code_fenced_plan_is_rejected(make_pipeline, server):
    fenced = "```json\n" + json.dumps(default_plan()) + "\n```"
    server.plan_response = httpx.Response(200, text=fenced)
    remote = RemoteStoreClient(make_pipeline())

    with pytest.raises(Permanent, match="not JSON"):
        asyncio.run(remote.generate_plan(UserProfile()))


@pytest.mark.parametrize("body", [
    {"days": []},
    {"days": [{"day": "2026-10-20", "exercises": [{"name": "Row", "sets": 0, "reps": 10}]}]},
    {"days": [{"day": "2026-10-20", "exercises": [{"name": "", "sets": 3, "reps": 10}]}]},
    {"days": [{"day": "2026-10-20", "exercises": [{"name": "Row", "sets": 3, "reps": 10, "tempo": "fast"}]}]},
    [default_plan()],
])
def test_malformed_plan_is_permanent(make_pipeline, server, body):
    server.plan_response = httpx.Response(200, json=body)
    remote = RemoteStoreClient(make_pipeline())

    with pytest.raises(Permanent):
        asyncio.run(remote.generate_plan(UserProfile()))


def test_malformed_exercise_list_is_permanent():
    pipeline = AuthenticatedRequestPipeline(
        base_url=BASE_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"exercises": []})),
    )
    pipeline.open_session(TokenPair(accessToken="a", refreshToken="r"))

    with pytest.raises(Permanent, match="Malformed exercise list"):
        asyncio.run(RemoteStoreClient(pipeline).exercises_by_day("2026-10-19"))
