import logging
from enum import Enum

from .cluster_error import (
    ClusterError, PrivilegeInsufficient, Unreachable, VerificationFailed)
from .config import ClusterConfig
from .node_base import Role
from .postgres import lag_bytes
from .steps import Pipeline, PipelineResult, StepOutcome, wait_until

logger = logging.getLogger("switchover")


class SwitchoverStep(Enum):
    PREFLIGHT = "Preflight"
    LAG_WAIT = "LagWait"
    PROMOTE = "Promote"
    FENCE_OLD = "FenceOld"
    ENSURE_SLOT = "EnsureSlot"
    REWIND = "Rewind"
    RECONFIGURE = "Reconfigure"
    START_AND_VERIFY = "StartAndVerify"
    POST_TASKS = "PostTasks"


READ_ONLY_STEPS = (SwitchoverStep.PREFLIGHT, SwitchoverStep.LAG_WAIT)


class ReplicationState:
    def __init__(self, primary_lsn, standby_replay_lsn, slot=None):
        self.primary_lsn = primary_lsn
        self.standby_replay_lsn = standby_replay_lsn
        self.slot = slot
        self.lag = lag_bytes(primary_lsn, standby_replay_lsn)

    def __repr__(self):
        return (f"<ReplicationState primary={self.primary_lsn} "
                f"replay={self.standby_replay_lsn} lag={self.lag}>")


class SwitchoverResult(PipelineResult):
    def __init__(self, dry_run):
        super(SwitchoverResult, self).__init__()
        self.dry_run = dry_run
        self.replication = None


class SwitchoverOrchestrator(Pipeline):
    name = "switchover"

    def __init__(self, config: ClusterConfig, cancellation=None):
        super(SwitchoverOrchestrator, self).__init__(config, cancellation)

    def switchover(self, primary, standby, dry_run=False) -> SwitchoverResult:
        self.result = SwitchoverResult(dry_run)
        steps = READ_ONLY_STEPS if dry_run else list(SwitchoverStep)
        logger.info(f"switchover {primary.name} -> {standby.name}"
                    + (" (dry run)" if dry_run else ""))
        # no cancellation point between promote and fencing the old primary
        if self._run_steps(steps, primary, standby,
                           uninterruptible=(SwitchoverStep.FENCE_OLD,)):
            logger.info("dry run ok, nothing changed" if dry_run
                        else f"switchover done, {standby.name} is primary")
        return self.result

    def _preflight(self, primary, standby):
        for node in (primary, standby):
            if not node.ssh_ping():
                raise Unreachable(
                    f"{node.name} ({node.address}) did not answer")
        primary.pg_check_binaries("pg_ctl", "pg_rewind", "psql")
        standby.pg_check_binaries("pg_ctl", "psql")
        for node in (primary, standby):
            logger.info(f"{node.name}: {node.pg_version()}")
        expected = ((primary, Role.PRIMARY), (standby, Role.STANDBY))
        for node, role in expected:
            observed = node.pg_probe_role()
            if observed != role:
                raise VerificationFailed(
                    f"{node.name} should be {role.value} but is "
                    f"{observed.value}")

    def _measure(self, primary, standby) -> ReplicationState:
        state = ReplicationState(
            primary.pg_current_wal_lsn(), standby.pg_last_wal_replay_lsn(),
            self.config.slot_name)
        self.result.replication = state
        logger.info(f"primary lsn {state.primary_lsn}, standby replay lsn "
                    f"{state.standby_replay_lsn}, lag {state.lag} bytes")
        return state

    def _lag_wait(self, primary, standby):
        cfg = self.config
        if not cfg.lag_wait_enabled:
            state = self._measure(primary, standby)
            return StepOutcome.SKIPPED, f"wait disabled, lag {state.lag}"

        def caught_up():
            lag = self._measure(primary, standby).lag
            return lag is not None and lag <= cfg.lag_wait_bytes

        if not wait_until(caught_up, timeout=cfg.lag_wait_timeout,
                          interval=cfg.poll_interval):
            raise VerificationFailed(
                f"lag {self.result.replication.lag} still above "
                f"{cfg.lag_wait_bytes} bytes after {cfg.lag_wait_timeout}s")
        return StepOutcome.SUCCEEDED, f"lag {self.result.replication.lag}"

    def _promote(self, primary, standby):
        standby.pg_promote()

        def left_recovery():
            try:
                return not standby.pg_in_recovery()
            except ClusterError as e:
                standby.log(f"waiting for promotion: {e}")
                return False

        if not wait_until(left_recovery, timeout=self.config.promote_timeout,
                          interval=self.config.poll_interval):
            raise VerificationFailed(
                f"{standby.name} still in recovery after promote")
        standby.observed_role = Role.PRIMARY

    def _fence_old(self, primary, standby):
        primary.pg_stop(mode="fast").check()
        primary.observed_role = Role.UNKNOWN

    def _ensure_slot(self, primary, standby):
        slot = self.config.slot_name
        if not slot:
            return StepOutcome.SKIPPED, "no slot_name configured"
        if standby.pg_ensure_physical_slot(slot):
            return StepOutcome.SUCCEEDED, f"created {slot}"
        return StepOutcome.SUCCEEDED, f"{slot} already exists"

    def _rewind(self, primary, standby):
        primary.pg_rewind(standby).check()

    def _reconfigure(self, primary, standby):
        primary.pg_mark_standby()
        settings = {"primary_conninfo": standby.pg_replication_conninfo(
            self.config.application_name)}
        if self.config.slot_name:
            settings["primary_slot_name"] = self.config.slot_name
        primary.pg_set_recovery_directives(
            settings, remove=("primary_conninfo", "primary_slot_name"))

    def _start_and_verify(self, primary, standby):
        primary.pg_start().check()
        if not self.config.repl_verify:
            return StepOutcome.SUCCEEDED, "started, replication not checked"
        app = self.config.application_name

        def connected():
            try:
                rows = standby.pg_stat_replication()
            except ClusterError as e:
                standby.log(f"pg_stat_replication: {e}")
                return []
            return [r for r in rows if r["application_name"] == app]

        rows = wait_until(connected, timeout=self.config.repl_wait_seconds,
                          interval=self.config.poll_interval)
        if not rows:
            logger.warning(f"{app} not connected to {standby.name} after "
                           f"{self.config.repl_wait_seconds}s, it may still "
                           f"catch up")
            return StepOutcome.WARNED, f"{app} not seen in pg_stat_replication"
        r = rows[0]
        primary.observed_role = Role.STANDBY
        return StepOutcome.SUCCEEDED, (
            f"{r['client_addr']}:{r['application_name']}:{r['state']}:"
            f"{r['sync_state']}")

    def _post_tasks(self, primary, standby):
        cfg = self.config
        warnings = []
        if cfg.checkpoint_after_promotion:
            try:
                standby.pg_checkpoint()
            except PrivilegeInsufficient as e:
                warnings.append(f"checkpoint skipped, not allowed: {e}")
            except ClusterError as e:
                warnings.append(f"checkpoint failed: {e}")
        if cfg.sync_standby_names is not None:
            self._enforce_sync_standby_names(standby)
        if cfg.mc_refresh_after_switch:
            warnings += self._refresh_control_plane(standby, primary)
        for w in warnings:
            logger.warning(w)
        if warnings:
            return StepOutcome.WARNED, "; ".join(warnings)

    def _enforce_sync_standby_names(self, node):
        wanted = self.config.sync_standby_names
        node.pg_set_conf_param("synchronous_standby_names", wanted)
        node.pg_reload()

        def effective():
            value = (node.pg_show("synchronous_standby_names") or "").strip()
            node.log(f"synchronous_standby_names is {value!r}")
            return value == wanted

        if not wait_until(effective, timeout=self.config.poll_interval * 5,
                          interval=self.config.poll_interval):
            raise VerificationFailed(
                f"{node.name}: synchronous_standby_names is not {wanted!r} "
                f"after reload")

    def _refresh_control_plane(self, *nodes):
        cfg = self.config
        nodes = [n for n in nodes if n.mc_enabled]
        warnings = []
        for n in nodes:
            res = n.mc_stop_mc_only(cfg.mc_stop_timeout)
            if not res.ok:
                warnings.append(f"{n.name}: control plane stop: {res!r}")
        for n in nodes:
            res = n.mc_start_mc_only(cfg.mc_start_timeout)
            if not res.ok:
                warnings.append(f"{n.name}: control plane start: {res!r}")
        return warnings
