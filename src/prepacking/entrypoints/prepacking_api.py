"""
Prepacking API - thin HTTP surface.

Write endpoints dispatch commands through the message bus, read endpoints
delegate to views.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from jose import JWTError, jwt
from pydantic import BaseModel, Field

import config
from prepacking import views
from prepacking.adapters import orm
from prepacking.adapters.http import ExternalApiError, ExternalServiceError
from prepacking.domain import commands
from prepacking.domain.exceptions import InvalidStatusTransition, NotFound, ValidationError
from prepacking.service_layer import messagebus
from prepacking.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemyUnitOfWork

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    orm.start_mappers()
    logger.info("ORM mappers initialized")
    yield


app = FastAPI(
    title="Prepacking API",
    description="Record and authorize the split of bulk lots into prepacks",
    version="1.0.0",
    lifespan=lifespan,
)


class LineItemRequest(BaseModel):
    orderableId: str
    lotId: Optional[str] = None
    prepackSize: Optional[int] = None
    numberOfPrepacks: Optional[int] = None
    remarks: Optional[str] = None
    extraData: Dict[str, Any] = Field(default_factory=dict)


class PrepackingEventRequest(BaseModel):
    facilityId: str
    programId: str
    comments: Optional[str] = None
    prepackerUserId: Optional[str] = None
    prepackerUserNames: Optional[str] = None
    lineItems: List[LineItemRequest] = Field(default_factory=list)


class CreatedResponse(BaseModel):
    id: str


def get_uow() -> AbstractUnitOfWork:
    return SqlAlchemyUnitOfWork()


def get_authentication(authorization: Optional[str] = Header(default=None)) -> commands.Authentication:
    """
    Decode the bearer token.

    Tokens issued to a user carry ``user_id``; client-credentials tokens do
    not, and identify a trusted machine client.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    secret = config.get_jwt_secret()
    try:
        claims = jwt.decode(
            authorization.split(" ", 1)[1],
            secret["key"],
            algorithms=[secret["algorithm"]],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(status_code=401, detail="Invalid bearer token")

    user_id = claims.get("user_id")
    return commands.Authentication(
        client_only=user_id is None,
        user_id=user_id,
        client_id=claims.get("client_id"),
    )


def _dispatch(command: commands.Command, uow: AbstractUnitOfWork):
    try:
        return messagebus.handle(command, uow)[0]
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": e.message, "field": e.field})
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ExternalServiceError as e:
        raise HTTPException(
            status_code=503,
            detail={"message": f"Upstream service unavailable: {e}", "retryable": True},
        )
    except ExternalApiError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "retryable": False},
        )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "prepacking-api",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.post("/api/prepackingEvents", status_code=201, response_model=CreatedResponse)
def create_prepacking_event(
    request: PrepackingEventRequest,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Validate and record a draft prepacking event."""
    logger.info(f"Received prepacking event for facility {request.facilityId}")
    cmd = commands.SubmitPrepackingEvent(
        facility_id=request.facilityId,
        program_id=request.programId,
        comments=request.comments,
        prepacker_user_id=request.prepackerUserId,
        prepacker_user_names=request.prepackerUserNames,
        line_items=[item.model_dump() for item in request.lineItems],
        authentication=authentication,
    )
    event_id = _dispatch(cmd, uow)
    return CreatedResponse(id=event_id)


@app.get("/api/prepackingEvents")
def list_prepacking_events(
    facilityId: Optional[str] = None,
    programId: Optional[str] = None,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return views.list_prepacking_events(uow, facility_id=facilityId, program_id=programId)


@app.get("/api/prepackingEvents/{event_id}")
def get_prepacking_event(
    event_id: str,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    prepacking_event = views.get_prepacking_event(event_id, uow)
    if prepacking_event is None:
        raise HTTPException(status_code=404, detail=f"Prepacking event {event_id} not found")
    return prepacking_event


@app.delete("/api/prepackingEvents/{event_id}", status_code=204)
def delete_prepacking_event(
    event_id: str,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    _dispatch(commands.DeletePrepackingEvent(event_id=event_id), uow)
    return Response(status_code=204)


@app.put("/api/prepackingEvents/{event_id}/authorize")
def authorize_prepacking_event(
    event_id: str,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Move stock for every line item and return the event with its remarks."""
    _dispatch(
        commands.AuthorizePrepackingEvent(event_id=event_id, authentication=authentication), uow
    )
    return views.get_prepacking_event(event_id, uow)


@app.put("/api/prepackingEvents/{event_id}/reject")
def reject_prepacking_event(
    event_id: str,
    authentication: commands.Authentication = Depends(get_authentication),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    _dispatch(
        commands.RejectPrepackingEvent(event_id=event_id, authentication=authentication), uow
    )
    return views.get_prepacking_event(event_id, uow)


def main():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
