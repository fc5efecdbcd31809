from fastapi import APIRouter, HTTPException

from ...core.exceptions import ConfigurationError, TaskFailure
from ...schemas.matching import MatchRequest, MatchResponse
from ...services.matching_service import matching_service

router = APIRouter()


@router.post("/match", response_model=MatchResponse)
def match(request: MatchRequest):
    """
    Assign matched controls to the submitted cases.

    Returns the matched-set table as records plus per-case shortfalls.
    Configuration problems (missing columns, invalid options) return 422.
    """
    try:
        return matching_service.match(request)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except TaskFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
