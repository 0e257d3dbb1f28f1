import logging
import time
from collections.abc import Iterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from hifz.application.config import resolve_config
from hifz.application.factory import Stores, get_stores
from hifz.application.progress_service import ProgressService
from hifz.consts import VERSION
from hifz.domain.constants import DUE_REVIEW_LIMIT
from hifz.domain.exceptions import HifzError, InvalidRangeError
from hifz.domain.models import Learning, is_valid_range

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("hifz.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"hifz server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("hifz server shutting down...")


app = FastAPI(
    title="hifz server",
    description="Read-only progress API and saved learnings for hifz.",
    version=VERSION,
    lifespan=lifespan,
)


def get_store_bundle() -> Iterator[Stores]:
    """One store bundle per request, closed afterwards."""
    stores = get_stores(resolve_config())
    try:
        yield stores
    finally:
        stores.close()


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class TierCountsResponse(BaseModel):
    start_id: int
    end_id: int
    total: int
    learned: int
    tiers: dict[int, int]
    percentages: dict[int, float]


class DueReviewResponse(BaseModel):
    item_id: int
    text: str
    group_id: int
    section_name: str | None = None
    next_review_at: datetime | None = None


class LearningResponse(BaseModel):
    id: int
    title: str
    first_item_id: int
    last_item_id: int
    created_at: datetime | None = None


class LearningRequest(BaseModel):
    title: str = Field(min_length=1)
    first_item_id: int
    last_item_id: int


def _learning_response(learning: Learning) -> LearningResponse:
    return LearningResponse(
        id=learning.id,
        title=learning.title,
        first_item_id=learning.first_item_id,
        last_item_id=learning.last_item_id,
        created_at=learning.created_at,
    )


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/ranges/{start_id}/{end_id}/tiers", response_model=TierCountsResponse)
async def range_tiers(start_id: int, end_id: int, stores: Stores = Depends(get_store_bundle)):
    """Mastery tier distribution of an item range."""
    try:
        counts = await ProgressService(stores.progress).get_tier_counts(start_id, end_id)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except HifzError as e:
        logger.error(f"Tier stats failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e

    return TierCountsResponse(
        start_id=start_id,
        end_id=end_id,
        total=counts.total,
        learned=counts.learned,
        tiers=dict(counts.per_tier),
        percentages=counts.percentages(),
    )


@app.get("/ranges/{start_id}/{end_id}/due", response_model=list[DueReviewResponse])
async def range_due(
    start_id: int,
    end_id: int,
    limit: int = DUE_REVIEW_LIMIT,
    stores: Stores = Depends(get_store_bundle),
):
    """Items in the range whose review is due, oldest first."""
    try:
        entries = await ProgressService(stores.progress).get_due_reviews(start_id, end_id, limit)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except HifzError as e:
        logger.error(f"Due review fetch failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e

    return [
        DueReviewResponse(
            item_id=entry.item_id,
            text=entry.text,
            group_id=entry.group_id,
            section_name=entry.section_name,
            next_review_at=entry.next_review_at,
        )
        for entry in entries
    ]


@app.get("/learnings", response_model=list[LearningResponse])
async def list_learnings(stores: Stores = Depends(get_store_bundle)):
    try:
        learnings = await stores.learnings.list_learnings()
    except HifzError as e:
        logger.error(f"Listing learnings failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return [_learning_response(learning) for learning in learnings]


@app.post("/learnings", response_model=LearningResponse, status_code=201)
async def add_learning(req: LearningRequest, stores: Stores = Depends(get_store_bundle)):
    """Save a named item range."""
    if not is_valid_range(req.first_item_id, req.last_item_id):
        raise HTTPException(
            status_code=400,
            detail=str(InvalidRangeError(req.first_item_id, req.last_item_id)),
        )

    logger.info(f"Saving learning via API: {req.title}")
    try:
        learning = await stores.learnings.add_learning(
            req.title, req.first_item_id, req.last_item_id
        )
    except HifzError as e:
        logger.error(f"Saving learning failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return _learning_response(learning)


@app.delete("/learnings/{learning_id}")
async def delete_learning(learning_id: int, stores: Stores = Depends(get_store_bundle)):
    try:
        deleted = await stores.learnings.delete_learning(learning_id)
    except HifzError as e:
        logger.error(f"Deleting learning failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Learning {learning_id} not found")
    return {"deleted": learning_id}
