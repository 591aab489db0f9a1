"""
Flow Automation Engine API entry point
"""
import logging
import uvicorn
from dotenv import load_dotenv

load_dotenv()

from flow_engine.config import EngineSettings

settings = EngineSettings.from_env()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from flow_engine.api.app import app


if __name__ == "__main__":
    if settings.api_reload:
        # Development mode
        uvicorn.run(
            "flow_engine.api.app:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=True,
            log_level=settings.log_level.lower()
        )
    else:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower()
        )
