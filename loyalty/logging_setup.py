# loyalty/logging_setup.py
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Send application and uvicorn logs to stderr in one format."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.set_name("loyalty")

    root = logging.getLogger()
    root.setLevel(level.upper())
    # avoid duplicate handlers when the app is built more than once (tests, reload)
    if not any(h.get_name() == "loyalty" for h in root.handlers):
        root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
