# main.py
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import config
from utils.logging_utils import logger
from services.auth_pipeline import AuthenticatedRequestPipeline
from services.sync_engine import WorkoutSyncEngine
from models.errors import (
    Forbidden, Permanent, SyncError, Transient, Unauthorized, ValidationFailure,
)
from models.schemas import (
    ExercisePatch, ExerciseRecord, GeneratedPlan, LoginRequest, SyncStatus, SyncTrigger, UserProfile,
)

logger.info(f"Starting in: {config.mode_description}")

# Initialize FastAPI application with dynamic title based on mode
app = FastAPI(title=f"Workout Sync Client - {config.mode_description}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

# Single engine shared by all requests from the local UI
engine = WorkoutSyncEngine(AuthenticatedRequestPipeline())

# HTTP status used for each error class when surfacing to the UI
ERROR_STATUS = [
    (ValidationFailure, 400),
    (Unauthorized, 401),
    (Forbidden, 403),
    (Permanent, 502),
    (Transient, 503),
]


def to_http_error(error: SyncError) -> HTTPException:
    """Translate a sync error into the HTTPException returned to the UI"""
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@app.on_event("startup")
async def startup_event():
    """Start the periodic sync loop"""
    engine.start()
    logger.info(f"Syncing with {config.api_base_url} every {config.sync_interval:.0f}s")

@app.on_event("shutdown")
async def shutdown_event():
    await engine.stop()

@app.get("/health")
async def health_check():
    """Simple health check endpoint for service monitoring"""
    return {"status": "healthy", "authenticated": engine.pipeline.is_authenticated}

@app.post("/auth/login")
async def login(credentials: LoginRequest):
    try:
        await engine.login(credentials.email, credentials.password)
    except SyncError as e:
        logger.warning(f"Login failed: {e}")
        raise to_http_error(e)
    return {"authenticated": True}

@app.post("/auth/logout")
async def logout():
    engine.logout()
    return {"authenticated": False}

@app.get("/days/{day}/exercises", response_model=List[ExerciseRecord])
async def exercises_for_day(day: str):
    """
    Load a training day from the remote store, merged with unsynced local edits.
    Falls back to the local copy when the remote store is unreachable.
    """
    try:
        return await engine.load_day(day)
    except Transient as e:
        logger.warning(f"Serving cached exercises for {day}: {e}")
        return engine.exercises_for_day(day)
    except SyncError as e:
        raise to_http_error(e)

@app.post("/exercises/{exercise_id}/track", response_model=ExerciseRecord)
async def track_change(exercise_id: str, patch: ExercisePatch):
    """Record a completion change; returns immediately with the optimistic record"""
    try:
        return engine.track_change(exercise_id, patch)
    except ValidationFailure as e:
        raise to_http_error(e)

@app.get("/sync/status", response_model=SyncStatus)
async def sync_status():
    return engine.get_sync_status()

@app.post("/sync/force", response_model=SyncStatus)
async def force_sync():
    return await engine.force_sync()

@app.post("/sync/trigger", status_code=202)
async def trigger_sync(trigger: SyncTrigger):
    """Opportunistic flush on app foregrounding or network reconnect"""
    if trigger.reason == "reconnect":
        engine.notify_reconnect()
    elif trigger.reason == "foreground":
        engine.notify_foreground()
    else:
        raise HTTPException(status_code=400, detail=f"Unknown trigger: {trigger.reason}")
    return {"triggered": trigger.reason}

@app.post("/plans/generate", response_model=GeneratedPlan)
async def generate_plan(profile: UserProfile):
    try:
        return await engine.generate_plan(profile)
    except SyncError as e:
        logger.error(f"Plan generation failed: {e}")
        raise to_http_error(e)
