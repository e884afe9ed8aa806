from datetime import date
from typing import Any, List, Mapping, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from models.errors import Permanent
from models.schemas import ExerciseRecord, GeneratedPlan, UserProfile
from services.auth_pipeline import ApiRequest, AuthenticatedRequestPipeline
from utils.logging_utils import logger

ModelT = TypeVar("ModelT", bound=BaseModel)

_exercise_list = TypeAdapter(List[ExerciseRecord])


class RemoteStoreClient:
    """
    Typed access to the remote store endpoints.
    Every response is decoded through a pydantic schema; anything that does
    not match is a Permanent error rather than a best-effort parse.
    """

    def __init__(self, pipeline: AuthenticatedRequestPipeline):
        self.pipeline = pipeline

    async def exercises_by_day(self, day: Union[date, str]) -> List[ExerciseRecord]:
        day_str = day.isoformat() if isinstance(day, date) else day
        response = await self.pipeline.send(
            ApiRequest("GET", "/exercises", params={"date": day_str})
        )
        body = _json(response)
        try:
            return _exercise_list.validate_python(body)
        except ValidationError as e:
            raise Permanent(f"Malformed exercise list: {e}", response.status_code) from e

    async def update_exercise_status(self, exercise_id: str, patch: Mapping[str, Any]) -> ExerciseRecord:
        """Push a patch; the server recomputes derived fields and returns the full record"""
        response = await self.pipeline.send(
            ApiRequest("POST", f"/exercises/{exercise_id}/status", json=dict(patch))
        )
        return _decode(response, ExerciseRecord)

    async def generate_plan(self, profile: UserProfile) -> GeneratedPlan:
        """
        Ask the LLM proxy for a plan. The body must be the plan JSON object itself;
        code fences or prose around it are rejected.
        """
        response = await self.pipeline.send(
            ApiRequest("POST", "/plans/generate", json=profile.model_dump())
        )
        plan = _decode(response, GeneratedPlan)
        logger.info(f"Generated plan with {len(plan.days)} days")
        return plan


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise Permanent(f"Response is not JSON: {response.text[:200]!r}", response.status_code) from e


def _decode(response: httpx.Response, model: Type[ModelT]) -> ModelT:
    body = _json(response)
    if not isinstance(body, dict):
        raise Permanent(f"Expected a JSON object for {model.__name__}", response.status_code)
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise Permanent(f"Malformed {model.__name__}: {e}", response.status_code) from e
