from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .errors import (
    DuplicatePeriodicContributionError,
    NotFoundError,
    PersistenceError,
    TaskAlreadyRunningError,
    TaskNotFoundError,
    ValidationError,
)
from .logging_config import configure_logging
from .models import Benefit, Contribution, ContributionRequest, TransactionHistory
from .scheduler import Scheduler
from .service import PensionService, register_default_jobs

settings = Settings.from_env()
configure_logging(settings.log_level, json_format=settings.log_json)

pension_service = PensionService(settings=settings)
scheduler = register_default_jobs(
    Scheduler(tick_interval_seconds=settings.scheduler_tick_seconds), pension_service
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        scheduler.start()
    yield
    if scheduler.is_running:
        scheduler.stop()


app = FastAPI(
    title="Pension Accrual API",
    description="Contribution postings, benefit eligibility and transaction history for pension members",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "pension-accrual", "scheduler_running": scheduler.is_running}


@app.post("/contributions", response_model=Contribution, status_code=status.HTTP_201_CREATED, tags=["Contributions"])
def post_contribution(request: ContributionRequest) -> Contribution:
    try:
        return pension_service.post_contribution(request)
    except DuplicatePeriodicContributionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@app.get("/members/{member_id}/contributions", response_model=list[Contribution], tags=["Contributions"])
def list_contributions(
    member_id: str,
    page_size: int = Query(10, gt=0),
    offset: int = Query(0, ge=0),
) -> list[Contribution]:
    return pension_service.list_contributions(member_id, page_size, offset)


@app.get("/members/{member_id}/transactions", response_model=list[TransactionHistory], tags=["Members"])
def get_transaction_history(
    member_id: str,
    page_size: int = Query(10, gt=0),
    offset: int = Query(0, ge=0),
) -> list[TransactionHistory]:
    try:
        return pension_service.get_transaction_history(member_id, page_size, offset)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/members/{member_id}/benefits", response_model=Benefit, status_code=status.HTTP_201_CREATED, tags=["Benefits"])
def calculate_benefit(member_id: str) -> Benefit:
    try:
        return pension_service.calculate_benefit(member_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@app.post("/jobs/{task_name}/run", tags=["System"])
def run_job(task_name: str) -> dict:
    try:
        return scheduler.run_task(task_name).to_dict()
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TaskAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
