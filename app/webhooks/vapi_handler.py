# app/webhooks/vapi_handler.py
"""Voice assistant calendar tool-call webhook"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.dependencies import get_vapi_router
from app.services.vapi.function_router import VapiFunctionRouter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/function-call")
async def handle_function_call(
        request: Request,
        function_router: VapiFunctionRouter = Depends(get_vapi_router),
):
    """The voice platform only reads the results envelope, so this never fails with an HTTP error"""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Vapi webhook body is not valid JSON")
        return JSONResponse(
            status_code=200,
            content={"results": [{"toolCallId": "default", "error": "Invalid webhook payload"}]},
        )

    if not isinstance(payload, dict):
        payload = {}

    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.info(f"Vapi function call received (correlation_id={correlation_id})")

    result = await function_router.handle(payload)
    return JSONResponse(status_code=200, content=result)
