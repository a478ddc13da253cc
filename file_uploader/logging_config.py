import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger. Call once at startup."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("pymongo").setLevel(logging.WARNING)
