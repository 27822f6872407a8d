import logging
import sys

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: str = 'INFO') -> None:
    root = logging.getLogger('leadflow')
    root.setLevel(getattr(logging, level.upper()))
    if any(getattr(h, '_leadflow', False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler._leadflow = True  # type: ignore[attr-defined]
    root.addHandler(handler)
