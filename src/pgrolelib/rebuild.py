import logging
from enum import Enum

from .cluster_error import (
    ClusterError, CommandFailed, PrivilegeInsufficient, SplitBrainError,
    VerificationFailed)
from .config import ClusterConfig
from .liveness import quiesce_probes
from .node_base import Role
from .postgres import slot_identifier
from .steps import Pipeline, PipelineResult, StepOutcome, wait_until

logger = logging.getLogger("rebuild")


class Scenario(Enum):
    STANDBY = "rebuild-standby"
    OLD_PRIMARY = "rebuild-old-primary"


class RestoreMethod(Enum):
    REWIND = "rewind"
    DELTA_RESTORE = "delta-restore"
    FULL_RESTORE = "full-restore"


class RebuildStep(Enum):
    DETECT_PRIMARY = "ActivePrimaryDetection"
    QUIESCE = "Quiesce"
    RESOLVE_SLOT = "SlotResolution"
    RESTORE = "Restore"
    ENSURE_SLOT = "EnsureSlotOnPrimary"
    RESUME = "Resume"


class RestoreAttempt:
    def __init__(self, method: RestoreMethod, succeeded, detail=""):
        self.method = method
        self.succeeded = succeeded
        self.detail = detail
        self.fallback = None

    def __repr__(self):
        fallback = self.fallback.value if self.fallback else None
        return (f"<RestoreAttempt {self.method.value} "
                f"succeeded={self.succeeded} fallback={fallback}>")


class RebuildResult(PipelineResult):
    def __init__(self, scenario):
        super(RebuildResult, self).__init__()
        self.scenario = scenario
        self.attempts = []
        self.primary = None
        self.slot = None


class RebuildOrchestrator(Pipeline):
    """
    Brings a node back as a standby of whichever node is the active
    primary, trying the cheapest restore method first:

        old primary: pg_rewind, then the standby chain
        standby:     pgbackrest delta restore, then wipe + pg_basebackup
    """
    name = "rebuild"

    def __init__(self, config: ClusterConfig, cluster, cancellation=None,
                 probes=None):
        super(RebuildOrchestrator, self).__init__(config, cancellation)
        self.cluster = cluster
        self.probes = probes
        self.failover = True

    def rebuild(self, node, scenario: Scenario, failover=True) -> RebuildResult:
        self.result = RebuildResult(scenario)
        self.failover = failover
        logger.info(f"{scenario.value} on {node.name}")
        if self._run_steps(list(RebuildStep), node, scenario):
            logger.info(f"{node.name} rebuilt as standby of "
                        f"{self.result.primary.name}")
        return self.result

    def _detect_primary(self, node, scenario):
        primaries = []
        for n in self.cluster.nodes:
            try:
                active = n.pg_is_active_primary()
            except ClusterError as e:
                logger.info(f"{n.name}: no answer: {e}")
                continue
            logger.info(f"{n.name}: not in recovery = {active}")
            if active:
                n.observed_role = Role.PRIMARY
                primaries.append(n)
        if not primaries:
            raise VerificationFailed("no active primary found")
        if len(primaries) > 1:
            err = SplitBrainError(primaries)
            logger.critical(str(err))
            raise err
        primary = primaries[0]
        if primary is node:
            raise VerificationFailed(
                f"{node.name} is the active primary, refusing to rebuild it")
        self.result.primary = primary
        return StepOutcome.SUCCEEDED, primary.name

    def _residual(self, node, probes):
        residual = {}
        for probe in probes:
            lines = probe.residual(node)
            if lines:
                residual[probe.label] = lines
        return residual

    def _quiesce(self, node, scenario):
        if node.mc_enabled:
            logger.info(f"{node.name}: control plane stop: {node.mc_stop()!r}")
        logger.info(f"{node.name}: database stop: {node.pg_stop()!r}")
        probes = self.probes if self.probes is not None else quiesce_probes(node)

        def quiet():
            residual = self._residual(node, probes)
            if residual:
                node.log(f"still running: {residual}")
            return not residual

        if wait_until(quiet, timeout=self.config.quiesce_timeout,
                      interval=self.config.poll_interval):
            return
        logger.warning(f"{node.name}: still running after "
                       f"{self.config.quiesce_timeout}s, clearing stale pid")
        node.pg_clear_stale_pid()
        residual = self._residual(node, probes)
        if residual:
            raise VerificationFailed(
                f"{node.name} did not stop: {', '.join(residual)}")
        return StepOutcome.WARNED, "stale postmaster.pid removed"

    def _resolve_slot(self, node, scenario):
        slot, source = self.config.slot_name, "configured"
        if not slot:
            source = "postgresql.auto.conf"
            try:
                slot = node.pg_recorded_slot_name()
            except ClusterError as e:
                logger.info(f"{node.name}: can't read recorded slot: {e}")
        if not slot:
            source = f"existing slot on {self.result.primary.name}"
            try:
                slot = self.result.primary.pg_find_physical_slot()
            except ClusterError as e:
                logger.info(f"can't list slots: {e}")
        if not slot:
            source = "host name"
            slot = slot_identifier(f"{node.host_short_name()}_slot")
        self.result.slot = slot
        return StepOutcome.SUCCEEDED, f"{slot} ({source})"

    def _attempt(self, method, restore, node):
        attempts = self.result.attempts
        if attempts and not attempts[-1].succeeded:
            attempts[-1].fallback = method
        logger.info(f"{node.name}: trying {method.value}")
        try:
            restore(node)
        except ClusterError as e:
            logger.warning(f"{node.name}: {method.value} failed: {e}")
            attempts.append(RestoreAttempt(method, False, str(e)))
            return False
        attempts.append(RestoreAttempt(method, True))
        return True

    def _restore(self, node, scenario):
        if scenario == Scenario.OLD_PRIMARY:
            if self._attempt(RestoreMethod.REWIND, self._rewind, node):
                return StepOutcome.SUCCEEDED, RestoreMethod.REWIND.value
        if node.pgbr_available():
            if self._attempt(RestoreMethod.DELTA_RESTORE, self._delta_restore,
                             node):
                return StepOutcome.SUCCEEDED, RestoreMethod.DELTA_RESTORE.value
        else:
            logger.info(f"{node.name}: pgbackrest not available")
        if self._attempt(RestoreMethod.FULL_RESTORE, self._full_restore, node):
            return StepOutcome.SUCCEEDED, RestoreMethod.FULL_RESTORE.value
        raise CommandFailed(
            f"{node.name}: every restore method failed: "
            f"{', '.join(a.method.value for a in self.result.attempts)}")

    def _rewind(self, node):
        node.pg_rewind(self.result.primary, write_recovery_conf=True).check()
        self._apply_recovery_directives(node)

    def _delta_restore(self, node):
        node.pgbr_restore(self.result.primary, self.config.application_name,
                          self.result.slot).check()
        self._apply_recovery_directives(node)

    def _full_restore(self, node):
        node.pg_wipe_data_directory()
        node.pg_basebackup(self.result.primary).check()
        self._apply_recovery_directives(node)

    def _apply_recovery_directives(self, node):
        """ whatever the restore tool wrote, these are the ones we want """
        node.pg_mark_standby()
        settings = {}
        if node.pgbr_restore_command:
            settings["restore_command"] = node.pgbr_restore_command
        settings["primary_conninfo"] = (
            self.result.primary.pg_replication_conninfo(
                self.config.application_name))
        settings["primary_slot_name"] = self.result.slot
        node.pg_set_recovery_directives(settings)

    def _ensure_slot(self, node, scenario):
        primary, slot = self.result.primary, self.result.slot
        try:
            if not primary.pg_can_create_slots():
                logger.info(f"NOTE: {primary.pg_user} may not create slots on "
                            f"{primary.name}, not checking slot {slot}")
                return StepOutcome.SKIPPED, "not allowed to create slots"
            created = primary.pg_ensure_physical_slot(slot)
        except PrivilegeInsufficient as e:
            logger.info(f"NOTE: {e}")
            return StepOutcome.SKIPPED, "not allowed to create slots"
        except ClusterError as e:
            logger.warning(f"could not ensure slot {slot}: {e}")
            return StepOutcome.WARNED, str(e)
        return StepOutcome.SUCCEEDED, (
            f"created {slot}" if created else f"{slot} already exists")

    def _resume(self, node, scenario):
        if not node.mc_enabled:
            node.pg_start(wait=True).check()
            return StepOutcome.SUCCEEDED, "database started"
        node.mc_start(failover=self.failover).check()
        status = node.mc_status()
        if status.ok:
            logger.info(f"{node.name}: control plane status:\n{status.stdout}")
        else:
            logger.warning(f"{node.name}: control plane status: {status!r}")
        return StepOutcome.SUCCEEDED, (
            "control plane started"
            + ("" if self.failover else " with failover disabled"))
