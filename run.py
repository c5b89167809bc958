"""
Run the pipeline service.
Usage: python3 run.py   (from the repository root; HOST/PORT/DEBUG from the environment or .env)
"""
import uvicorn

from config import settings

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
