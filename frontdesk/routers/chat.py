from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from frontdesk.database import get_db
from frontdesk.logging_config import get_logger
from frontdesk.routers.deps import get_pipeline
from frontdesk.schemas.chat import ChatRequest, ChatResponse
from frontdesk.schemas.inbound import CustomerHints
from frontdesk.services.errors import NotFoundError, StorageError
from frontdesk.services.pipeline import Pipeline
from frontdesk.services.state_machine import InvalidTransitionError

logger = get_logger("chat")

router = APIRouter(prefix="/api", tags=["chat"])

MSG_INTERNAL_ERROR = "Internal server error"


@router.post("/chat", response_model=ChatResponse)
def chat(request: ChatRequest, db: Session = Depends(get_db), pipeline: Pipeline = Depends(get_pipeline)):
    """Synchronous web chat turn."""
    text = (request.message or "").strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")
    if request.business_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Business ID is required")

    hints = CustomerHints(name=request.customer_name, email=request.customer_email, phone=request.customer_phone)
    try:
        outcome = pipeline.process_webchat(
            db,
            request.business_id,
            text,
            customer_id=request.customer_id,
            conversation_id=request.conversation_id,
            hints=hints,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StorageError as e:
        logger.error(f"Chat failed: {e}", extra={"context": {"business_id": str(request.business_id)}})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=MSG_INTERNAL_ERROR)

    reply = outcome.reply
    response = ChatResponse(
        message=reply.content,
        conversation_id=outcome.conversation_id,
        customer_id=outcome.customer_id,
        metadata=reply.as_metadata(),
    )
    if reply.model_unavailable:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json", by_alias=True),
        )
    return response
