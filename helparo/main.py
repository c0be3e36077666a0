"""
ASGI entry point, e.g. ``uvicorn helparo.main:app``.
"""

import logging

from helparo.api import create_app
from helparo.config import settings
from helparo.database import load_sample_data
from helparo.logging_config import setup_logging

logger = logging.getLogger(__name__)

setup_logging(settings.log_level_value)

app = create_app()

if settings.sample_data_path is not None:
    load_sample_data(path=settings.sample_data_path)

logger.info("Helparo status service initialized")
