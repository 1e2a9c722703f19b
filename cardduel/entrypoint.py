import uvicorn

from .config import Config
from .logging_config import get_logger, setup_logging


def main() -> None:
    setup_logging(log_level=Config.LOG_LEVEL, log_file=Config.LOG_FILE)
    logger = get_logger(__name__)

    from .app import create_app

    app = create_app(Config)
    logger.info(f"Starting card duel server on {Config.HOST}:{Config.PORT}")
    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
