import logging

import uvicorn

from async_push_service.api import build_app
from async_push_service.config_loader import load_settings
from async_push_service.logger import get_logger


if __name__ == "__main__":
    settings = load_settings()

    # Configure logging level from settings
    logging.basicConfig(
        level=getattr(logging, str(settings["log_level"]), logging.INFO),
        format='[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True  # Force reconfiguration to avoid duplicate handlers
    )

    app = build_app(settings)
    get_logger().info(
        "Push relay listening on %s:%s", settings["http_host"], settings["http_port"]
    )
    uvicorn.run(app, host=str(settings["http_host"]), port=int(settings["http_port"]))
