import re
from abc import ABCMeta, abstractmethod

ERE_SPECIAL = re.compile(r"([.\[\](){}*+?^$|\\])")


def ere_escape(s: str) -> str:
    return ERE_SPECIAL.sub(r"\\\1", s)


class LivenessProbe(metaclass=ABCMeta):
    """
    Reports evidence that something is still alive on a node.

    residual() returns the matching lines (empty when nothing is alive) and
    raises Unreachable / CommandFailed when the node could not be asked.
    """
    label = "probe"

    @abstractmethod
    def command(self, node) -> str:
        pass

    def residual(self, node):
        res = node.ssh_run(self.command(node)).check()
        return [l for l in res.stdout.splitlines() if l.strip()]

    def __repr__(self):
        return f"<{type(self).__name__} {self.label}>"


class ProcessPatternProbe(LivenessProbe):
    """ pgrep -f on the full command line, exit 1 (no match) is fine """

    def __init__(self, label, pattern):
        self.label = label
        # bracket the first char so the probing shell never matches itself
        self.pattern = f"[{pattern[0]}]{pattern[1:]}"

    def command(self, node):
        return (f"pgrep -fa '{self.pattern}'; rc=$?; "
                f"[ $rc -le 1 ] || exit $rc")


class PostgresProcessProbe(ProcessPatternProbe):
    """ the server binary is postgres or, started by some units, postmaster """

    def __init__(self, pg_data_directory):
        pgdata = ere_escape(pg_data_directory)
        super(PostgresProcessProbe, self).__init__(
            "postgres", f"post(gres|master)( .*)? -D *{pgdata}/?( |$)")


class ControlPlaneProbe(ProcessPatternProbe):
    def __init__(self, mc_dir):
        super(ControlPlaneProbe, self).__init__(
            "mirroring controller",
            f"mc_(main|watch|agent).*-M *{ere_escape(mc_dir)}")


class PidFileProbe(LivenessProbe):
    """ first line of postmaster.pid names a live process """
    label = "postmaster.pid"

    def command(self, node):
        return (f"pid=$(head -1 {node.pg_pid_file} 2>/dev/null); "
                f"if [ -n \"$pid\" ]; then "
                f"ps -o pid=,args= -p \"$pid\" | grep -E 'post(gres|master)' "
                f"|| true; fi")


class SocketProbe(LivenessProbe):
    """ a unix socket for the port is still listening """
    label = "socket"

    def command(self, node):
        return (f"ss -xl 2>/dev/null | "
                f"grep -F '.s.PGSQL.{node.pg_port}' || true")


def fencing_probes(node):
    probes = [PostgresProcessProbe(node.pg_data_directory), PidFileProbe(),
              SocketProbe()]
    if node.mc_enabled:
        probes.append(ControlPlaneProbe(node.mc_dir))
    return probes


def quiesce_probes(node):
    probes = [PidFileProbe(), SocketProbe()]
    if node.mc_enabled:
        probes.insert(0, ControlPlaneProbe(node.mc_dir))
    return probes
