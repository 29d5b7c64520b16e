"""Public application status lookup.

Both the reference number and the applicant's email must match; a
mismatch on either is reported exactly like an unknown reference.
"""

import logging

from fastapi import APIRouter, Depends

from eta_service.deps import get_repository
from eta_service.middleware.exceptions import ResourceNotFoundError
from eta_service.schemas.application import StatusLookupRequest, StatusOut
from eta_service.services.applications import ApplicationRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=StatusOut)
async def lookup_status(
    body: StatusLookupRequest,
    repository: ApplicationRepository = Depends(get_repository),
):
    application = await repository.lookup(body.reference_number, body.email)
    if application is None:
        logger.info("Status lookup miss for %s", body.reference_number)
        raise ResourceNotFoundError("Application", body.reference_number.strip().upper())

    return StatusOut(
        reference_number=application.reference_number,
        status=application.status,
        applicant_name=application.applicant_name,
        submitted_at=application.submitted_at,
        updated_at=application.updated_at,
    )
