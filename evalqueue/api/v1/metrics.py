from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('evaluation_queue_depth', 'Number of jobs in PENDING state', ['priority'])
JOB_FAILURES = Counter('evaluation_job_failures_total', 'Total failed evaluation attempts', ['type']) # type=retryable|final
JOB_TIMEOUTS = Counter('evaluation_job_timeouts_total', 'Evaluation attempts that hit the processing timeout')
JOB_START_DELAY = Histogram('evaluation_job_start_delay_seconds', 'Time from submission to dispatch', buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0])

JOB_DURATION = Histogram('evaluation_job_duration_seconds', 'Time from dispatch to completion', buckets=[1.0, 5.0, 10.0, 60.0, 120.0, 300.0])

JOB_COMPLETE_TOTAL = Counter(
    "evaluation_job_complete_total",
    "Total evaluation attempts that reached a terminal state",
    ["result"] # completed|failed|cancelled
)

JOBS_INFLIGHT = Gauge(
    "evaluation_jobs_inflight",
    "Number of jobs currently processing or evaluating"
)

JOBS_SWEPT = Counter(
    "evaluation_jobs_swept_total",
    "Total number of terminal jobs evicted by the retention sweeper"
)

LISTENER_ERRORS = Counter(
    "queue_listener_errors_total",
    "Subscriber callbacks that raised during event delivery",
    ["event_type"]
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
