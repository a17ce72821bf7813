import re
import shlex
from pathlib import PurePosixPath

from .cluster_error import (
    CommandFailed, PrivilegeInsufficient, VerificationFailed,
    ConfigurationError)
from .conf import ConfFile, PgConfigReader, quote, conninfo
from .node_base import Role
from .ssh import Ssh

# never wiped, whatever pg_data_directory says
ROOT_LIKE = frozenset(
    str(PurePosixPath("/") / d) for d in (
        "", "bin", "boot", "dev", "etc", "home", "lib", "lib64", "opt",
        "proc", "root", "run", "sbin", "srv", "sys", "tmp", "usr", "var"))

PRIVILEGE_RE = re.compile(
    r"permission denied|must be superuser|must be .*replication", re.I)


def lsn_to_int(lsn: str) -> int:
    try:
        wal_num, wal_off = lsn.strip().split("/")
        return 4294967296 * int(wal_num, 16) + int(wal_off, 16)
    except ValueError:
        raise VerificationFailed(f"not an LSN: {lsn!r}")


def lag_bytes(primary_lsn, replay_lsn):
    """ None when the standby has not replayed anything yet """
    if not primary_lsn or not replay_lsn:
        return None
    return max(0, lsn_to_int(primary_lsn) - lsn_to_int(replay_lsn))


def slot_identifier(name: str) -> str:
    return re.sub(r"[^a-z0-9_]", "_", name.lower())


class Postgres(Ssh):
    def __init__(self, *,
                 pg_bindir,
                 pg_data_directory,
                 pg_port=5432,
                 pg_user="postgres",
                 pg_repl_user="repluser",
                 pg_database="postgres",
                 pg_sslmode="prefer",
                 pg_systemd_unit=None,
                 pg_config_file=None,
                 pg_host=None,
                 **kwargs):
        super(Postgres, self).__init__(**kwargs)
        self.pg_bindir = pg_bindir
        self.pg_data_directory = pg_data_directory
        self.pg_port = pg_port
        self.pg_user = pg_user
        self.pg_repl_user = pg_repl_user
        self.pg_database = pg_database
        self.pg_sslmode = pg_sslmode
        self.pg_systemd_unit = pg_systemd_unit
        self.pg_host = pg_host or self.address
        self._pg_config_file = pg_config_file

    def pg_binary(self, name) -> str:
        return str(PurePosixPath(self.pg_bindir) / name)

    @property
    def pg_ctl(self):
        return self.pg_binary("pg_ctl")

    @property
    def psql(self):
        return self.pg_binary("psql")

    def _pg_data_file(self, name) -> str:
        return str(PurePosixPath(self.pg_data_directory) / name)

    @property
    def pg_config_file(self):
        return self._pg_config_file or self._pg_data_file("postgresql.conf")

    @property
    def pg_auto_conf_file(self):
        return self._pg_data_file("postgresql.auto.conf")

    @property
    def pg_pid_file(self):
        return self._pg_data_file("postmaster.pid")

    def pg_check_binaries(self, *names):
        missing = []
        for name in names:
            exe = self.pg_binary(name)
            if not self.ssh_run(f"test -x {shlex.quote(exe)}").ok:
                missing.append(exe)
        if missing:
            raise ConfigurationError(
                f"{self.name}: not executable: {', '.join(missing)}")

    def pg_execute(self, sql, *, db=None):
        """
        psql output is unaligned, tuples only, fields separated by a zero
        byte, one record per line
        """
        cmd = (f"PGCONNECT_TIMEOUT={self.ssh_timeout} {self.psql} -w "
               f"-h {self.pg_host} -p {self.pg_port} -U {self.pg_user} "
               f"-d {db or self.pg_database} -v ON_ERROR_STOP=1 -qXAtz "
               f"-c {shlex.quote(sql)}")
        try:
            o = self.ssh_run_check(cmd)
        except CommandFailed as e:
            if PRIVILEGE_RE.search(str(e)):
                raise PrivilegeInsufficient(f"{self.name}: {sql}: {e}")
            raise
        if not o:
            return []
        if o.endswith("\n"):
            o = o[:-1]
        res = [record.split("\0") for record in o.split("\n")]
        self.log(f"pg_execute results:\n{res}")
        return res

    def pg_scalar(self, sql, **kwargs):
        rows = self.pg_execute(sql, **kwargs)
        return rows[0][0] if rows else None

    def pg_version(self):
        return self.pg_scalar("SELECT version()")

    def pg_in_recovery(self) -> bool:
        ans = self.pg_scalar("SELECT pg_is_in_recovery()")
        if ans not in ("t", "f"):
            raise VerificationFailed(
                f"{self.name}: unexpected pg_is_in_recovery() answer {ans!r}")
        return ans == "t"

    def pg_probe_role(self) -> Role:
        in_recovery = self.pg_in_recovery()
        self.observed_role = Role.STANDBY if in_recovery else Role.PRIMARY
        self.log(f"observed role {self.observed_role.value}")
        return self.observed_role

    def pg_is_active_primary(self) -> bool:
        return self.pg_scalar("SELECT NOT pg_is_in_recovery()") == "t"

    def pg_current_wal_lsn(self):
        return self.pg_scalar("SELECT pg_current_wal_lsn()")

    def pg_last_wal_replay_lsn(self):
        return self.pg_scalar("SELECT pg_last_wal_replay_lsn()") or None

    def pg_promote(self):
        self.ssh_run_check(
            f"{self.pg_ctl} -D {self.pg_data_directory} promote")

    def _systemctl(self, action):
        return self.ssh_run(
            f"sudo -n systemctl {action} {self.pg_systemd_unit}")

    def pg_stop(self, mode="fast"):
        # systemctl stop is a fast shutdown, immediate bypasses the unit
        if self.pg_systemd_unit and mode != "immediate":
            return self._systemctl("stop")
        return self.ssh_run(
            f"{self.pg_ctl} -D {self.pg_data_directory} -m {mode} stop")

    def pg_start(self, wait=False):
        if self.pg_systemd_unit:
            return self._systemctl("start")
        log_file = self._pg_data_file("pgrole_start.log")
        if wait:
            return self.ssh_run(
                f"{self.pg_ctl} -D {self.pg_data_directory} -w -l {log_file} "
                f"start > /dev/null 2>&1 < /dev/null")
        return self.ssh_run(
            f"setsid nohup {self.pg_ctl} -D {self.pg_data_directory} -W "
            f"-l {log_file} start > /dev/null 2>&1 < /dev/null &")

    def pg_reload(self):
        self.ssh_run_check(f"{self.pg_ctl} -D {self.pg_data_directory} reload")

    def pg_checkpoint(self):
        self.pg_execute("CHECKPOINT")

    def pg_show(self, setting):
        return self.pg_scalar(f"SHOW {setting}")

    def pg_slot_exists(self, slot) -> bool:
        return self.pg_scalar(
            f"SELECT EXISTS (SELECT 1 FROM pg_replication_slots "
            f"WHERE slot_name = {quote(slot)})") == "t"

    def pg_create_physical_slot(self, slot):
        self.pg_execute(
            f"SELECT slot_name "
            f"FROM pg_create_physical_replication_slot({quote(slot)}, true)")

    def pg_ensure_physical_slot(self, slot) -> bool:
        """ returns True if the slot had to be created """
        if self.pg_slot_exists(slot):
            self.log(f"replication slot {slot} already exists")
            return False
        self.log(f"creating physical replication slot {slot}")
        self.pg_create_physical_slot(slot)
        return True

    def pg_find_physical_slot(self):
        return self.pg_scalar(
            "SELECT slot_name FROM pg_replication_slots "
            "WHERE slot_type = 'physical' "
            "ORDER BY active DESC, slot_name LIMIT 1") or None

    def pg_can_create_slots(self) -> bool:
        return self.pg_scalar(
            "SELECT rolsuper OR rolreplication FROM pg_roles "
            "WHERE rolname = current_user") == "t"

    def pg_stat_replication(self):
        rows = self.pg_execute(
            "SELECT application_name, client_addr, state, sync_state "
            "FROM pg_stat_replication")
        return [dict(zip(("application_name", "client_addr", "state",
                          "sync_state"), r)) for r in rows]

    def pg_replication_conninfo(self, application_name):
        """ how a follower connects to this node """
        return conninfo(
            host=self.pg_host, port=self.pg_port, user=self.pg_repl_user,
            application_name=application_name, sslmode=self.pg_sslmode)

    def pg_admin_conninfo(self, application_name=None):
        return conninfo(
            host=self.pg_host, port=self.pg_port, user=self.pg_user,
            dbname=self.pg_database, sslmode=self.pg_sslmode,
            application_name=application_name)

    def pg_recorded_slot_name(self):
        text = self.read_file(self.pg_auto_conf_file)
        return PgConfigReader(text or "").get("primary_slot_name") or None

    def _pg_rewrite_conf(self, conf_file, settings, include_commented=False,
                         remove=()):
        current = self.read_file(conf_file)
        conf = ConfFile(current)
        for key in remove:
            conf.remove(key)
        new = str(conf.update(settings, include_commented))
        if new == current:
            self.log(f"{conf_file} is up to date")
            return False
        self.write_file(conf_file, new)
        return True

    def pg_set_recovery_directives(self, settings: dict, remove=()):
        return self._pg_rewrite_conf(
            self.pg_auto_conf_file, settings, remove=remove)

    def pg_set_conf_param(self, key, value):
        return self._pg_rewrite_conf(
            self.pg_config_file, {key: value}, include_commented=True)

    def pg_mark_standby(self):
        d = self.pg_data_directory
        self.ssh_run_check(
            f"rm -f {d}/recovery.conf {d}/recovery.signal && "
            f"touch {d}/standby.signal")

    def pg_rewind(self, source: "Postgres", write_recovery_conf=False):
        source_server = source.pg_admin_conninfo(f"{self.name}-rewind")
        cmd = (f"env -u LD_LIBRARY_PATH PGOPTIONS='-c jit=off' "
               f"{self.pg_binary('pg_rewind')} "
               f"--target-pgdata={self.pg_data_directory} "
               f"--source-server={shlex.quote(source_server)} --progress")
        if write_recovery_conf:
            cmd += " -R"
        return self.ssh_run(cmd)

    def pg_basebackup(self, source: "Postgres"):
        return self.ssh_run(
            f"{self.pg_binary('pg_basebackup')} -h {source.pg_host} "
            f"-p {source.pg_port} -U {self.pg_repl_user} "
            f"-D {self.pg_data_directory} -R -X stream --progress --verbose")

    def pg_resolved_data_directory(self):
        return self.ssh_run_check(
            f"readlink -f {shlex.quote(self.pg_data_directory)}").strip()

    def pg_wipe_data_directory(self):
        resolved = self.pg_resolved_data_directory()
        if (not resolved or resolved in ROOT_LIKE
                or not PurePosixPath(resolved).is_absolute()):
            raise ConfigurationError(
                f"{self.name}: refusing to wipe {self.pg_data_directory} "
                f"(resolves to {resolved!r})")
        self.log(f"wiping {resolved}")
        d = shlex.quote(resolved)
        self.ssh_run_check(
            f"find {d} -mindepth 1 -maxdepth 1 -exec rm -rf -- {{}} + && "
            f"chmod 700 {d}")

    def pg_clear_stale_pid(self):
        pid_file = self.pg_pid_file
        self.ssh_run(
            f"pid=$(head -1 {pid_file} 2>/dev/null); "
            f"if [ -n \"$pid\" ] && ! kill -0 \"$pid\" 2>/dev/null; "
            f"then rm -f {pid_file}; fi")
