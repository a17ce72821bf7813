import json
import logging
from datetime import datetime

import pytest

from conftest import FakeHost, cluster_def
from pgrolelib import app
from pgrolelib.cluster import Cluster
from pgrolelib.logs import add_run_log_file


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cluster.json"
    path.write_text(json.dumps(cluster_def(
        log_dir=str(tmp_path / "log"),
        marker_dir=str(tmp_path / "markers"))))
    return str(path)


@pytest.fixture
def fake_hosts(monkeypatch):
    monkeypatch.setattr(app, "configure_logging", lambda: None)
    monkeypatch.setattr(app, "install_signal_handlers", lambda c: None)
    monkeypatch.setattr(app, "add_run_log_file",
                        lambda log_dir, kind: f"{log_dir}/{kind}.log")
    monkeypatch.setattr(logging, "shutdown", lambda: None)
    return {}


@pytest.fixture
def prepare(monkeypatch, fake_hosts):
    """ the Cluster built by the app gets FakeHost nodes, set up by setup() """

    def _prepare(setup=lambda hosts: None):
        def fake_cluster(config):
            cluster = Cluster(config)
            for n in cluster.nodes:
                fake_hosts[n.name] = FakeHost(n, monkeypatch, [])
            setup(fake_hosts)
            return cluster

        monkeypatch.setattr(app, "Cluster", fake_cluster)
        return fake_hosts

    return _prepare


def unreachable(power_off_status=0):
    def setup(hosts):
        hosts["server2"].reachable = False
        hosts["server2"].power_off_status = power_off_status
    return setup


def test_fence_unreachable_node_powered_off(config_file, prepare):
    hosts = prepare(unreachable())
    code = app.fence_main(["-c", config_file, "monitor", "switch", "server2"])
    assert code == 0
    assert hosts["server2"].bmc_commands[-1] == "chassis power off"


def test_fence_power_off_failure(config_file, prepare):
    prepare(unreachable(power_off_status=1))
    code = app.fence_main(["-c", config_file, "command", "detach", "server2"])
    assert code == 1


def test_fence_unknown_server_id(config_file, prepare):
    hosts = prepare()
    code = app.fence_main(["-c", config_file, "monitor", "switch", "server9"])
    assert code == 1
    assert all(h.bmc_commands == [] for h in hosts.values())


def test_missing_config_file(tmp_path, prepare):
    hosts = prepare()
    code = app.fence_main(["-c", str(tmp_path / "nope.json"), "monitor",
                           "switch", "server1"])
    assert code == 1
    assert hosts == {}


def test_fence_arguments():
    args = app.parse_fence_args(["command", "detach", "server1"])
    assert args.trigger == "command"
    assert args.action == "detach"
    assert args.server_id == "server1"
    assert args.config == "/etc/pgrole/cluster.json"
    with pytest.raises(SystemExit):
        app.parse_fence_args(["reboot", "switch", "server1"])


def test_switchover_needs_a_mode():
    with pytest.raises(SystemExit):
        app.parse_switchover_args([])
    with pytest.raises(SystemExit):
        app.parse_switchover_args(["--dry-run", "--execute"])
    assert app.parse_switchover_args(["--dry-run"]).mode == app.Mode.DRY_RUN


def test_switchover_dry_run(config_file, prepare):
    def healthy(hosts):
        hosts["server1"].on("SELECT pg_is_in_recovery()", "f\n")
        hosts["server2"].on("SELECT pg_is_in_recovery()", "t\n")
        hosts["server1"].on("pg_current_wal_lsn", "0/3000060\n")
        hosts["server2"].on("pg_last_wal_replay_lsn", "0/3000060\n")

    hosts = prepare(healthy)

    code = app.switchover_main(["-c", config_file, "--dry-run"])

    assert code == 0
    assert hosts["server2"].ran("promote") == []
    assert hosts["server1"].ran(" stop") == []


def test_switchover_refuses_wrong_roles(config_file, prepare):
    hosts = prepare()
    # nobody answers pg_is_in_recovery()
    code = app.switchover_main(["-c", config_file, "--execute"])
    assert code == 1
    assert hosts["server2"].ran("promote") == []


def test_rebuild_arguments():
    args = app.parse_rebuild_args(["rebuild-old-primary", "--node", "server1",
                                   "--disable-failover"])
    assert app.Scenario(args.scenario) == app.Scenario.OLD_PRIMARY
    assert args.node == "server1"
    assert args.disable_failover


def test_run_log_file_name(tmp_path):
    path = add_run_log_file(tmp_path / "log", "rebuild",
                            now=datetime(2024, 5, 6, 7, 8, 9))
    root = logging.getLogger()
    handler = next(h for h in root.handlers
                   if getattr(h, "baseFilename", None) == str(path))
    try:
        logging.getLogger("pgrole").warning("hello")
        handler.flush()
    finally:
        root.removeHandler(handler)
        handler.close()
    assert path.name == "rebuild.20240506070809.log"
    assert "pgrole: hello" in path.read_text()
