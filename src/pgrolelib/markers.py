from datetime import datetime
from enum import Enum
from pathlib import Path

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"


class FenceMethod(Enum):
    SOFT = "soft"
    HARD = "hard"


def marker_path(marker_dir, node, method: FenceMethod) -> Path:
    if method == FenceMethod.SOFT:
        return Path(marker_dir) / f"fence_{node.name}.flag"
    return Path(marker_dir) / f"fence_bmc_{node.bmc_address}.flag"


def write_marker(marker_dir, node, method: FenceMethod,
                 when: datetime) -> Path:
    """ audit only, nothing reads these back """
    path = marker_path(marker_dir, node, method)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"{when.strftime(TIMESTAMP_FORMAT)} fenced_by_{method.value}\n")
    return path
