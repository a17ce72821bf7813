import json

import pytest

from conftest import cluster_def
from pgrolelib.cluster import Cluster
from pgrolelib.cluster_error import ConfigurationError
from pgrolelib.config import config_from_dict, load_config
from pgrolelib.node_base import Role


def test_load_config(tmp_path):
    path = tmp_path / "cluster.json"
    path.write_text(json.dumps(cluster_def()))
    config = load_config(str(path))
    assert [h.name for h in config.hosts] == ["server1", "server2"]
    assert config.pg_port == 5432
    assert config.lag_wait_timeout == 120
    assert config.lag_wait_enabled


def test_config_is_immutable():
    config = config_from_dict(cluster_def())
    with pytest.raises(AttributeError):
        config.pg_port = 1


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.json"))


def test_not_json(tmp_path):
    path = tmp_path / "cluster.json"
    path.write_text("{")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


@pytest.mark.parametrize("change", [
    {"pg_bindir": None},
    {"unknown_key": 1},
    {"pg_data_directory": "relative/path"},
    {"pgbackrest_stanza": None},
])
def test_bad_config(change):
    d = cluster_def(**change)
    with pytest.raises(ConfigurationError):
        config_from_dict(d)


def test_exactly_two_hosts():
    d = cluster_def()
    d["hosts"] = d["hosts"][:1]
    with pytest.raises(ConfigurationError):
        config_from_dict(d)


def test_bad_role():
    d = cluster_def()
    d["hosts"][0]["role"] = "leader"
    with pytest.raises(ConfigurationError):
        config_from_dict(d)


def test_host_overrides():
    d = cluster_def()
    d["hosts"][1]["pg_port"] = 5433
    d["hosts"][1]["pg_host"] = "10.0.0.12"
    cluster = Cluster(config_from_dict(d))
    server1, server2 = cluster.nodes
    assert server1.pg_port == 5432
    assert server2.pg_port == 5433
    assert server1.pg_host == "192.0.2.11"
    assert server2.pg_host == "10.0.0.12"
    assert server2.believed_role == Role.STANDBY
    assert server2.bmc_address == "192.0.2.102"


def test_unknown_host_override():
    d = cluster_def()
    d["hosts"][0]["lag_wait_timeout"] = 3
    with pytest.raises(ConfigurationError):
        config_from_dict(d)


def test_cluster_lookups():
    cluster = Cluster(config_from_dict(cluster_def()))
    server1 = cluster.node("server1")
    assert cluster.peer(server1) is cluster.node("server2")
    assert cluster.designated(Role.PRIMARY) is server1
    with pytest.raises(ConfigurationError):
        cluster.node("server9")
