# formflow/submissions/router.py

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from formflow.cache.manager import CacheManager, get_cache_manager
from formflow.core.db import get_db
from formflow.submissions.schemas import ClientContext, SubmissionCreateRequest, SubmissionResult
from formflow.submissions.services import SubmissionIngestor
from formflow.utils.logger import get_logger

router = APIRouter(tags=["Submissions"])
logger = get_logger(__name__)


@router.post(
    "/forms/{form_id}/submissions",
    response_model=SubmissionResult,
    status_code=status.HTTP_201_CREATED,
)
def create_submission(
    form_id: int,
    body: SubmissionCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheManager = Depends(get_cache_manager),
):
    """Accept a form submission and queue its downstream processing."""
    client = ClientContext.from_headers(
        request.headers,
        remote_addr=request.client.host if request.client else None,
    )
    result = SubmissionIngestor(db, cache).process_submission(
        form_id, body.data, meta=body.meta, client=client
    )
    if not result.success:
        logger.warning("Submission rejected", form_id=form_id, error=result.error)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=result.model_dump(mode="json"),
        )
    return result
