import logging
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s %(name)s: %(message)s'


def configure_logging():
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(logging.DEBUG)
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def add_run_log_file(log_dir, kind, now=None) -> Path:
    """ one file per run: <log_dir>/<kind>.<YYYYmmddHHMMSS>.log """
    now = now or datetime.now()
    path = Path(log_dir) / f"{kind}.{now:%Y%m%d%H%M%S}.log"
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return path
