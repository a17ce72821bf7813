from .backup import PgBackRest
from .bmc import Bmc
from .mirroring import MirroringController


class Node(Bmc, MirroringController, PgBackRest):
    def __init__(self, **kwargs):
        super(Node, self).__init__(**kwargs)

    def host_short_name(self):
        res = self.ssh_run("hostname -s")
        return res.stdout.strip() if res.ok and res.stdout.strip() else self.name
