import logging
from enum import Enum


class Role(Enum):
    PRIMARY = "primary"
    STANDBY = "standby"
    UNKNOWN = "unknown"


class NodeBase:
    def __init__(self, *, name, address, bmc_address=None, role=None,
                 **kwargs):
        super(NodeBase, self).__init__()
        self.name = name
        self.address = address
        self.bmc_address = bmc_address
        self.believed_role = Role(role) if role else Role.UNKNOWN
        self.observed_role = None
        self.logger = logging.getLogger(self.name)

    def log(self, msg: str):
        self.logger.debug(msg)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name} {self.address}>"
