# slotdesk/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotdesk.core.config import settings

#Import Routers
from slotdesk.api.v1 import appointments

# Create FastAPI app
app = FastAPI(
    title="slotdesk",
    description="Appointment booking backend for voice and chat agents",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
#Include routers
app.include_router(appointments.router, tags=["appointments"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "slotdesk booking API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "calendar_failure_policy": settings.scheduling.calendar_failure_policy,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "slotdesk.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
