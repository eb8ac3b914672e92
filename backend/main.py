from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from api.legacy import router as legacy_router
import logging
from config import settings

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="Order Notifier",
    description="Scheduled WhatsApp alerts for new and cancelled orders",
    version=VERSION
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": VERSION}

# Include routers
app.include_router(legacy_router, tags=["legacy"])
