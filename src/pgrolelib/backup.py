import shlex

from .postgres import Postgres


class PgBackRest(Postgres):
    def __init__(self, *, pgbackrest_bin=None, pgbackrest_stanza=None,
                 **kwargs):
        super(PgBackRest, self).__init__(**kwargs)
        self.pgbackrest_bin = pgbackrest_bin
        self.pgbackrest_stanza = pgbackrest_stanza

    @property
    def pgbr_restore_command(self):
        if not self.pgbackrest_bin:
            return None
        return (f"{self.pgbackrest_bin} --stanza={self.pgbackrest_stanza} "
                f"archive-get %f %p")

    def pgbr_available(self) -> bool:
        if not self.pgbackrest_bin:
            self.log("pgbackrest is not configured")
            return False
        res = self.ssh_run(f"test -x {shlex.quote(self.pgbackrest_bin)}")
        if not res.ok:
            self.log(f"{self.pgbackrest_bin} is not executable")
        return res.ok

    def pgbr_restore(self, primary: Postgres, application_name, slot=None):
        """ delta restore as a standby, streaming from primary """
        conn = primary.pg_replication_conninfo(application_name)
        options = [f"primary_conninfo={conn}"]
        if slot:
            options.append(f"primary_slot_name={slot}")
        recovery = " ".join(
            f"--recovery-option={shlex.quote(o)}" for o in options)
        return self.ssh_run(
            f"{self.pgbackrest_bin} --stanza={self.pgbackrest_stanza} "
            f"--pg1-path={self.pg_data_directory} restore --type=standby "
            f"--delta --force {recovery}")
