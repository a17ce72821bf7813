import json
from dataclasses import dataclass, field, fields
from pathlib import PurePosixPath
from typing import Optional, Tuple

from .cluster_error import ConfigurationError

DEFAULT_CONFIG_FILE = "/etc/pgrole/cluster.json"


@dataclass(frozen=True)
class HostConfig:
    name: str
    address: str
    bmc_address: Optional[str] = None
    pg_host: Optional[str] = None
    role: Optional[str] = None
    overrides: Tuple[Tuple[str, object], ...] = ()

    @property
    def db_host(self):
        return self.pg_host or self.address


@dataclass(frozen=True)
class ClusterConfig:
    """
    Immutable cluster definition, built once per invocation.

    Top level keys are common to every host; a host entry may override any
    of them (kept in HostConfig.overrides and merged in node_kwargs()).
    """
    pg_bindir: str
    pg_data_directory: str
    hosts: Tuple[HostConfig, ...] = ()
    cluster_name: str = "pgrole"

    ssh_user: str = "postgres"
    ssh_timeout: int = 10
    ssh_key_file: Optional[str] = None
    command_timeout: int = 600

    pg_port: int = 5432
    pg_user: str = "postgres"
    pg_repl_user: str = "repluser"
    pg_database: str = "postgres"
    pg_sslmode: str = "prefer"
    pg_systemd_unit: Optional[str] = None
    pg_config_file: Optional[str] = None

    mc_ctl: Optional[str] = None
    mc_dir: Optional[str] = None
    mc_stop_timeout: int = 20
    mc_start_timeout: int = 30

    pgbackrest_bin: Optional[str] = None
    pgbackrest_stanza: Optional[str] = None

    ipmi_cmd: str = "ipmitool"
    ipmi_user: Optional[str] = None
    ipmi_password: Optional[str] = field(default=None, repr=False)
    ipmi_interface: str = "lanplus"
    ipmi_timeout: int = 30

    slot_name: Optional[str] = None
    application_name: str = "standby"

    lag_wait_bytes: int = 0
    lag_wait_timeout: int = 120
    poll_interval: float = 2
    promote_timeout: int = 60
    repl_verify: bool = False
    repl_wait_seconds: int = 60
    checkpoint_after_promotion: bool = True
    sync_standby_names: Optional[str] = None
    mc_refresh_after_switch: bool = True

    quiesce_timeout: int = 60

    log_dir: str = "/var/tmp/pgrole"
    marker_dir: str = "/var/tmp/pgrole/fencing"

    @property
    def lag_wait_enabled(self):
        return self.lag_wait_bytes >= 0

    def node_kwargs(self, host: HostConfig) -> dict:
        common = {
            f.name: getattr(self, f.name) for f in fields(self)
            if f.name in NODE_KEYS}
        return {
            **common,
            **dict(host.overrides),
            "name": host.name,
            "address": host.address,
            "bmc_address": host.bmc_address,
            "pg_host": host.db_host,
            "role": host.role,
        }


# settings that end up on each node object, overridable per host
NODE_KEYS = frozenset({
    "ssh_user", "ssh_timeout", "ssh_key_file", "command_timeout",
    "pg_bindir", "pg_data_directory", "pg_port", "pg_user", "pg_repl_user",
    "pg_database", "pg_sslmode", "pg_systemd_unit", "pg_config_file",
    "mc_ctl", "mc_dir",
    "pgbackrest_bin", "pgbackrest_stanza",
    "ipmi_cmd", "ipmi_user", "ipmi_password", "ipmi_interface",
    "ipmi_timeout",
})

HOST_KEYS = frozenset({"name", "address", "bmc_address", "pg_host", "role"})
ROLES = ("primary", "standby")


def _check_absolute(key, value):
    if value is not None and not PurePosixPath(value).is_absolute():
        raise ConfigurationError(f"{key} must be an absolute path: {value}")


def config_from_dict(cluster_def: dict) -> ClusterConfig:
    known = {f.name for f in fields(ClusterConfig)}
    common = {k: v for k, v in cluster_def.items() if k != "hosts"}
    unknown = set(common) - known
    if unknown:
        raise ConfigurationError(
            f"unknown configuration keys: {', '.join(sorted(unknown))}")
    for key in ("pg_bindir", "pg_data_directory"):
        if not common.get(key):
            raise ConfigurationError(f"missing required key {key}")
    hosts = []
    for h in cluster_def.get("hosts", []):
        if "name" not in h or "address" not in h:
            raise ConfigurationError(f"host entry needs name and address: {h}")
        overrides = {k: v for k, v in h.items() if k not in HOST_KEYS}
        bad = set(overrides) - NODE_KEYS
        if bad:
            raise ConfigurationError(
                f"host {h['name']}: keys not overridable per host: "
                f"{', '.join(sorted(bad))}")
        role = h.get("role")
        if role is not None and role not in ROLES:
            raise ConfigurationError(
                f"host {h['name']}: role must be one of {ROLES}, not {role}")
        hosts.append(HostConfig(
            name=h["name"],
            address=h["address"],
            bmc_address=h.get("bmc_address"),
            pg_host=h.get("pg_host"),
            role=role,
            overrides=tuple(sorted(overrides.items()))))
    if len(hosts) != 2:
        raise ConfigurationError(
            f"exactly two hosts are supported, got {len(hosts)}")
    if hosts[0].name == hosts[1].name:
        raise ConfigurationError(f"duplicate host name {hosts[0].name}")
    config = ClusterConfig(hosts=tuple(hosts), **common)
    for key in ("pg_bindir", "pg_data_directory", "mc_dir", "pg_config_file"):
        _check_absolute(key, getattr(config, key))
    if config.mc_ctl and not config.mc_dir:
        raise ConfigurationError("mc_ctl is set but mc_dir is not")
    if config.pgbackrest_bin and not config.pgbackrest_stanza:
        raise ConfigurationError(
            "pgbackrest_bin is set but pgbackrest_stanza is not")
    return config


def load_config(path=DEFAULT_CONFIG_FILE) -> ClusterConfig:
    try:
        with open(path) as f:
            cluster_def = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"can't read {path}: {e}")
    except ValueError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}")
    return config_from_dict(cluster_def)
