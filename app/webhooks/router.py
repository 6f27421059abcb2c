# app/webhooks/router.py
from fastapi import APIRouter

webhook_router = APIRouter()


# Import handlers inside a function to avoid circular imports
def register_handlers():
    from app.webhooks import vapi_handler
    webhook_router.include_router(vapi_handler.router, prefix="/calendar")


register_handlers()


@webhook_router.get("/")
async def webhook_info():
    return {
        "endpoints": {
            "calendar_function_call": "/api/vapi/webhooks/calendar/function-call",
        },
        "note": "Responses are always 200; failures are reported in results[].error"
    }
