import logging

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .agents.base import CompletionClient
from .analysis.complexity import ModelTiers
from .config import Settings, get_settings
from .connectors.discovery import DiscoveryClient
from .errors import JobNotFoundError
from .jobs.schema import JobStatusView, JobSubmission
from .jobs.store import JobStore
from .models import CostReport, HealthResponse, JobAccepted
from .monitoring.cost import CostMonitor
from .planning import Planner
from .workflow.generator import HybridGenerator
from .workflow.pipeline import JobProcessor
from .workflow.store import ArtifactStore

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(
    title="autoflow API",
    description="Turns automation plans into validated workflow graphs",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_processor(settings: Settings, jobs: JobStore, cost_monitor: CostMonitor) -> JobProcessor:
    """Wire the pipeline from settings; AI and discovery are optional."""
    completion = CompletionClient(settings.completion_timeout_seconds) if settings.anthropic_api_key else None
    discovery_factory = (lambda: DiscoveryClient.from_settings(settings)) if settings.discovery_configured else None
    generator = HybridGenerator(
        discovery_factory=discovery_factory,
        completion=completion,
        cost_monitor=cost_monitor,
        connect_timeout=settings.discovery_timeout_seconds,
        ai_enabled=settings.ai_assist_enabled,
    )
    planner = Planner(completion, settings.planner_model, cost_monitor=cost_monitor)
    return JobProcessor(
        jobs,
        planner,
        generator,
        ArtifactStore(settings.data_dir / "artifacts"),
        tiers=ModelTiers(simple=settings.simple_model, complex=settings.complex_model),
    )


settings = get_settings()
job_store = JobStore()
cost_monitor = CostMonitor.from_settings(settings)
processor = build_processor(settings, job_store, cost_monitor)


@app.get("/api/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok",
        discovery_configured=settings.discovery_configured,
        ai_assist_enabled=settings.ai_assist_enabled,
    )


@app.post("/api/jobs", response_model=JobAccepted, status_code=202)
def submit_job(submission: JobSubmission, background_tasks: BackgroundTasks):
    """Accept a job and process it after the response is sent."""
    job = processor.submit(submission)
    background_tasks.add_task(processor.process, job.id)
    return JobAccepted(job_id=job.id, status=job.status)


@app.get("/api/jobs", response_model=list[JobStatusView])
def list_jobs():
    return [job.view() for job in processor.jobs.list_jobs()]


@app.get("/api/jobs/{job_id}", response_model=JobStatusView)
def get_job(job_id: str):
    try:
        job = processor.jobs.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return job.view()


@app.get("/api/costs", response_model=CostReport)
def get_costs():
    hints = cost_monitor.get_optimization_recommendations()
    return CostReport(
        summary=cost_monitor.get_cost_summary(),
        recommendations=hints["recommendations"],
        potential_savings=hints["potentialSavings"],
    )
