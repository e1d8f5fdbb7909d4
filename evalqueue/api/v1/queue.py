from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from evalqueue.api.deps import Queue
from evalqueue.domain.errors import QueueStoppedError
from evalqueue.domain.states import JobStatus, QueuePriority

router = APIRouter()

class SubmissionBody(BaseModel):
    code: str
    language: str
    files: list[Any] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(from_attributes=True)

class JobCreate(BaseModel):
    project_id: str
    user_id: str
    submission: SubmissionBody
    priority: QueuePriority = QueuePriority.NORMAL

class OwnerRequest(BaseModel):
    user_id: str

class JobResponse(BaseModel):
    id: str
    project_id: str
    user_id: str
    submission: SubmissionBody
    status: JobStatus
    priority: QueuePriority
    position: int
    estimated_wait_time: float
    processing_time: Optional[int] = None
    retry_count: int
    max_retries: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Any] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

class StatsResponse(BaseModel):
    total_items: int
    pending_items: int
    processing_items: int
    completed_items: int
    failed_items: int
    cancelled_items: int
    average_wait_time: float
    average_processing_time: float
    estimated_queue_time: float
    model_config = ConfigDict(from_attributes=True)

class HealthResponse(BaseModel):
    is_running: bool
    active_jobs: int
    queue_size: int
    last_activity: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def submit_job(payload: JobCreate, queue: Queue):
    try:
        return await queue.add_to_queue(
            payload.project_id,
            payload.user_id,
            payload.submission.model_dump(),
            payload.priority,
        )
    except QueueStoppedError as e:
        raise HTTPException(status_code=503, detail=str(e))

@router.get("/stats", response_model=StatsResponse)
async def get_stats(queue: Queue):
    return queue.get_queue_stats()

@router.get("/health", response_model=HealthResponse)
async def get_health(queue: Queue):
    return queue.get_health_status()

@router.get("/users/{user_id}", response_model=list[JobResponse])
async def list_user_jobs(user_id: str, queue: Queue):
    return queue.get_user_queue_items(user_id)

@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, queue: Queue):
    job = queue.get_queue_item(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job

@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, body: OwnerRequest, queue: Queue):
    if not await queue.cancel_queue_item(job_id, body.user_id):
        raise HTTPException(status_code=409, detail="Job cannot be cancelled")
    return queue.get_queue_item(job_id)

@router.post("/{job_id}/retry", response_model=JobResponse)
async def retry_job(job_id: str, body: OwnerRequest, queue: Queue):
    if not await queue.retry_queue_item(job_id, body.user_id):
        raise HTTPException(status_code=409, detail="Job cannot be retried")
    return queue.get_queue_item(job_id)
