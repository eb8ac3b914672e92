from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

router = APIRouter()

# Actions the old email worker accepted; delivery now happens on the schedule only
LEGACY_ACTIONS = {"order-notification", "order-cancellation", "customer-confirmation", "report"}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

@router.options("/")
async def preflight():
    """Browser preflight from the old web client"""
    return Response(status_code=200, headers=CORS_HEADERS)

@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE"])
async def cron_only():
    return PlainTextResponse("Cron-only worker", headers=CORS_HEADERS)

@router.post("/")
async def legacy_action(request: Request):
    """Email actions are retired; answer with an error the old client can show"""
    try:
        payload = await request.json()
        action = payload.get("action")
    except (ValueError, AttributeError) as e:
        return JSONResponse({"error": str(e) or "Invalid request body"}, status_code=500, headers=CORS_HEADERS)

    if action in LEGACY_ACTIONS:
        return JSONResponse(
            {"success": False, "error": f"'{action}' is deprecated; notifications are sent by the scheduled worker"},
            status_code=410,
            headers=CORS_HEADERS,
        )
    return JSONResponse({"error": "Invalid action"}, status_code=400, headers=CORS_HEADERS)
