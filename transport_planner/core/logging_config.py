import logging
import sys

def setup_logging():
    """
    Configure structured logging for the application.

    Sets up logging to stdout with timestamps, log levels, and module names.
    Works the same for the API process and for ad-hoc planning scripts.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Reduce SQLAlchemy and HTTP client noise in logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("transport_planner")


# Create global logger instance
logger = setup_logging()
