import os
import uvicorn
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from callboard.api.routes import router
from callboard.config.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Create FastAPI app
app = FastAPI(
    title="Callboard",
    description="Voice AI agent management API using Twilio, ElevenLabs and OpenAI",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include router with prefix
app.include_router(router, prefix="/api/v1", include_in_schema=True)
logger = logging.getLogger(__name__)


# Health check route
@app.get("/health")
async def health():
    return {"status": "healthy"}

# Root route
@app.get("/")
async def root():
    return {
        "message": "Callboard API",
        "documentation": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    # Get port from environment or use default
    port = int(os.getenv("PORT", 8000))

    logger.info(f"Starting Callboard on port {port}")
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
