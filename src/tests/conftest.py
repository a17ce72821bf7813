import json
from pathlib import Path

import pytest

from pgrolelib import steps
from pgrolelib.cluster import Cluster
from pgrolelib.cluster_error import Unreachable
from pgrolelib.config import config_from_dict
from pgrolelib.ssh import CommandResult

CLUSTER_FILE = Path(__file__).parent / "cluster.json"


def cluster_def(**overrides):
    with open(CLUSTER_FILE) as fh:
        cluster_json = json.load(fh)
    cluster_json.update(overrides)
    return cluster_json


def row(*fields):
    return "\0".join(fields) + "\n"


class FakeHost:
    """
    Stands in for a node's ssh, sftp and bmc: commands are answered by the
    most recently added rule whose fragment is in the command.
    """

    def __init__(self, node, monkeypatch, journal):
        self.node = node
        self.journal = journal
        self.commands = []
        self.bmc_commands = []
        self.rules = []
        self.files = {}
        self.reachable = True
        self.power_off_status = 0
        self.on("echo ok", "ok\n")
        monkeypatch.setattr(node, "ssh_run", self.ssh_run)
        monkeypatch.setattr(node, "read_file", self.read_file)
        monkeypatch.setattr(node, "write_file", self.write_file)
        monkeypatch.setattr(node, "bmc_run", self.bmc_run)
        monkeypatch.setattr(node, "bmc_validate", lambda: None)

    def on(self, fragment, *answers, exit_status=0, stderr=""):
        """
        answers are stdout strings (or callables taking the command),
        used in order, the last one sticks
        """
        self.rules.insert(
            0, [fragment, list(answers) or [""], exit_status, stderr])
        return self

    def fail(self, fragment, exit_status=1, stderr="failed"):
        return self.on(fragment, exit_status=exit_status, stderr=stderr)

    def ran(self, fragment):
        return [c for c in self.commands if fragment in c]

    def ssh_run(self, command, *, check=False, timeout=None):
        self.commands.append(command)
        self.journal.append((self.node.name, command))
        if not self.reachable:
            res = CommandResult(command, unreachable=True)
        else:
            res = CommandResult(command, 0)
            for rule in self.rules:
                fragment, answers, exit_status, stderr = rule
                if fragment in command:
                    answer = answers.pop(0) if len(answers) > 1 else answers[0]
                    if callable(answer):
                        answer = answer(command)
                    res = CommandResult(command, exit_status, answer, stderr)
                    break
        if check:
            res.check()
        return res

    def read_file(self, path):
        if not self.reachable:
            raise Unreachable(f"{self.node.name} unreachable")
        return self.files.get(str(path))

    def write_file(self, path, content):
        if not self.reachable:
            raise Unreachable(f"{self.node.name} unreachable")
        self.journal.append((self.node.name, f"write {path}"))
        self.files[str(path)] = content

    def bmc_run(self, args):
        command = " ".join(args)
        self.bmc_commands.append(command)
        self.journal.append((self.node.name, f"bmc {command}"))
        if command == "chassis power status":
            return CommandResult(command, 0, "Chassis Power is on\n")
        return CommandResult(command, self.power_off_status)


@pytest.fixture
def overrides():
    return {}


@pytest.fixture
def config(tmp_path, overrides):
    return config_from_dict(cluster_def(
        log_dir=str(tmp_path / "log"),
        marker_dir=str(tmp_path / "markers"),
        **overrides))


@pytest.fixture
def cluster(config):
    return Cluster(config)


@pytest.fixture
def journal():
    return []


@pytest.fixture
def hosts(cluster, monkeypatch, journal):
    return {n.name: FakeHost(n, monkeypatch, journal) for n in cluster.nodes}


@pytest.fixture
def clock(monkeypatch):
    now = [1000.0]

    def fake_sleep(seconds):
        now[0] += seconds

    monkeypatch.setattr(steps, "time", lambda: now[0])
    monkeypatch.setattr(steps, "sleep", fake_sleep)
    return now
