import logging
import sys

from dualcast.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = None) -> None:
    """Configure root logging once for the API process."""
    root = logging.getLogger()
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    if not any(getattr(h, "_dualcast", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._dualcast = True
        root.addHandler(handler)

    root.setLevel(log_level)

    # Quiet chatty client libraries
    for name in ("botocore", "boto3", "urllib3", "httpx", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)
