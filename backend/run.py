import uvicorn

from slotdesk.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "slotdesk.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
