"""API routes for Career Match."""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status as http_status

from career_match import __version__
from career_match.api.models import (
    AnalyticsResponse,
    ApplicationCreateRequest,
    ApplicationEditRequest,
    DecisionRequest,
    DecisionResponse,
    HealthCheck,
    LearningStatusResponse,
    OwnerRequest,
    QuotaResponse,
    RescoreResponse,
    RollbackRequest,
    SendRequest,
    SendResponse,
    SkillCompletedRequest,
    StatusResponse,
    TrackingSignalRequest,
)
from career_match.core.models import (
    Application,
    ApplicationEvent,
    ApplicationStatus,
    Feedback,
    Match,
    Posting,
    Profile,
    WeightVector,
)
from career_match.service import CareerMatchService
from career_match.utils.logging import get_logger

logger = get_logger(__name__)

# Set by the application lifespan in main.py
service: Optional[CareerMatchService] = None

profiles_router = APIRouter(tags=["profiles"])
matches_router = APIRouter(tags=["matches"])
applications_router = APIRouter(tags=["applications"])
learning_router = APIRouter(tags=["learning"])
throttle_router = APIRouter(tags=["throttle"])
health_router = APIRouter(prefix="/health", tags=["health"])


def get_service() -> CareerMatchService:
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


# Profiles and postings

@profiles_router.put("/profiles/{user_id}", response_model=Profile)
async def upsert_profile(user_id: str, profile: Profile, svc: CareerMatchService = Depends(get_service)):
    """Store or replace a user's profile."""
    if profile.user_id != user_id:
        raise HTTPException(status_code=400, detail="Profile user_id does not match the path")
    return await svc.upsert_profile(profile)


@profiles_router.post("/postings", response_model=Posting, status_code=http_status.HTTP_201_CREATED)
async def ingest_posting(posting: Posting, svc: CareerMatchService = Depends(get_service)):
    """Ingest a scraped posting."""
    return await svc.upsert_posting(posting)


@profiles_router.put("/postings/{posting_id}/active", response_model=Posting)
async def set_posting_active(posting_id: str, is_active: bool, svc: CareerMatchService = Depends(get_service)):
    """Open or close a posting."""
    return await svc.set_posting_active(posting_id, is_active)


# Matches

@matches_router.post("/users/{user_id}/score", response_model=StatusResponse, status_code=http_status.HTTP_202_ACCEPTED)
async def score_user(user_id: str, background_tasks: BackgroundTasks, svc: CareerMatchService = Depends(get_service)):
    """Schedule a scoring run for the user's unmatched active postings."""
    await svc.repository.get_profile(user_id)
    background_tasks.add_task(run_scoring, svc, user_id)
    return StatusResponse(status="accepted", message="Scoring scheduled", data={"user_id": user_id})


@matches_router.get("/users/{user_id}/matches", response_model=List[Match])
async def list_surfaced_matches(user_id: str, svc: CareerMatchService = Depends(get_service)):
    """Matches currently surfaced for review, best first."""
    return await svc.list_surfaced_matches(user_id)


@matches_router.get("/matches/{match_id}", response_model=Match)
async def get_match(match_id: str, svc: CareerMatchService = Depends(get_service)):
    return await svc.get_match(match_id)


@matches_router.post("/matches/{match_id}/decision", response_model=DecisionResponse)
async def decide_match(match_id: str, request: DecisionRequest, svc: CareerMatchService = Depends(get_service)):
    """Approve or reject a match."""
    outcome = await svc.decide_match(
        match_id,
        request.user_id,
        request.decision,
        reason=request.reason,
        notes=request.notes,
        channel=request.channel
    )
    return DecisionResponse(
        match=outcome.match,
        feedback=outcome.feedback,
        backfilled=outcome.backfilled,
        application=outcome.application
    )


@matches_router.post("/users/{user_id}/skills/completed", response_model=List[RescoreResponse])
async def skill_completed(user_id: str, request: SkillCompletedRequest, svc: CareerMatchService = Depends(get_service)):
    """Re-score matches that listed the completed skill as a gap."""
    results = await svc.on_skill_completed(user_id, request.skill)
    return [RescoreResponse(**asdict(r)) for r in results]


# Applications

@applications_router.post("/applications", response_model=Application, status_code=http_status.HTTP_201_CREATED)
async def create_application(request: ApplicationCreateRequest, svc: CareerMatchService = Depends(get_service)):
    return await svc.create_application_from_match(
        request.match_id,
        user_id=request.user_id,
        channel=request.channel,
        cover_letter=request.cover_letter,
        custom_message=request.custom_message
    )


@applications_router.get("/users/{user_id}/applications", response_model=List[Application])
async def list_applications(
    user_id: str,
    status: Optional[ApplicationStatus] = None,
    svc: CareerMatchService = Depends(get_service)
):
    return await svc.list_applications(user_id, status)


@applications_router.get("/applications/{application_id}", response_model=Application)
async def get_application(application_id: str, svc: CareerMatchService = Depends(get_service)):
    return await svc.get_application(application_id)


@applications_router.get("/applications/{application_id}/events", response_model=List[ApplicationEvent])
async def application_events(application_id: str, svc: CareerMatchService = Depends(get_service)):
    return await svc.application_events(application_id)


@applications_router.patch("/applications/{application_id}", response_model=Application)
async def edit_application(
    application_id: str,
    request: ApplicationEditRequest,
    svc: CareerMatchService = Depends(get_service)
):
    """Edit the cover letter or message of a queued application."""
    return await svc.edit_application(
        application_id,
        cover_letter=request.cover_letter,
        custom_message=request.custom_message,
        user_id=request.user_id
    )


@applications_router.post("/applications/{application_id}/send", response_model=SendResponse)
async def send_application(application_id: str, request: SendRequest, svc: CareerMatchService = Depends(get_service)):
    """Send a queued application; throttled sends are deferred, not rejected."""
    outcome = await svc.send_application(application_id, confirm=request.confirm, user_id=request.user_id)
    return SendResponse(
        outcome=outcome.kind.value,
        application=outcome.application,
        retry_after_seconds=outcome.retry_after.total_seconds() if outcome.retry_after else None,
        error=outcome.error
    )


@applications_router.post("/applications/{application_id}/withdraw", response_model=Application)
async def withdraw_application(application_id: str, request: OwnerRequest, svc: CareerMatchService = Depends(get_service)):
    return await svc.withdraw_application(application_id, user_id=request.user_id)


@applications_router.post("/applications/{application_id}/tracking", response_model=Application)
async def tracking_signal(
    application_id: str,
    request: TrackingSignalRequest,
    svc: CareerMatchService = Depends(get_service)
):
    """Callback for channel tracking signals."""
    return await svc.apply_tracking_signal(application_id, request.status, request.details)


# Learning

@learning_router.get("/users/{user_id}/feedback", response_model=List[Feedback])
async def feedback_history(user_id: str, svc: CareerMatchService = Depends(get_service)):
    return await svc.feedback_history(user_id)


@learning_router.get("/users/{user_id}/feedback/analytics", response_model=AnalyticsResponse)
async def feedback_analytics(user_id: str, svc: CareerMatchService = Depends(get_service)):
    analytics = await svc.feedback_analytics(user_id)
    return AnalyticsResponse(**asdict(analytics))


@learning_router.get("/users/{user_id}/learning", response_model=LearningStatusResponse)
async def learning_status(user_id: str, svc: CareerMatchService = Depends(get_service)):
    status = await svc.learning_status(user_id)
    return LearningStatusResponse(**asdict(status))


@learning_router.get("/users/{user_id}/weights", response_model=List[WeightVector])
async def weight_history(user_id: str, svc: CareerMatchService = Depends(get_service)):
    return await svc.weight_history(user_id)


@learning_router.post("/users/{user_id}/weights/rollback", response_model=WeightVector)
async def rollback_weights(user_id: str, request: RollbackRequest, svc: CareerMatchService = Depends(get_service)):
    return await svc.rollback_weights(user_id, request.version)


# Throttle

@throttle_router.get("/users/{user_id}/quota", response_model=List[QuotaResponse])
async def quota_status(user_id: str, svc: CareerMatchService = Depends(get_service)):
    """Remaining sends per channel."""
    return [
        QuotaResponse(
            channel=q.channel,
            used=q.used,
            limit=q.limit,
            window_seconds=q.window.total_seconds(),
            resets_at=q.resets_at
        )
        for q in await svc.quota_status(user_id)
    ]


# Health

@health_router.get("/", response_model=HealthCheck)
async def health_check():
    """Health check endpoint."""
    components = {
        "service": "healthy" if service else "unavailable",
        "scheduler": "healthy" if service and service.scheduler.running else "stopped",
    }

    overall_status = "healthy" if components["service"] == "healthy" else "degraded"

    return HealthCheck(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        components=components
    )


# Helper functions

async def run_scoring(svc: CareerMatchService, user_id: str) -> None:
    """Background scoring job; failures are logged, never raised to the client."""
    try:
        matches = await svc.score_user(user_id)
        logger.info("Background scoring finished", user_id=user_id, created=len(matches))
    except Exception as e:
        logger.error("Background scoring failed", user_id=user_id, error=str(e))


all_routers = [
    profiles_router,
    matches_router,
    applications_router,
    learning_router,
    throttle_router,
    health_router
]
