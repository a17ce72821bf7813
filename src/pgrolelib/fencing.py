import logging
from datetime import datetime
from enum import Enum

from .cluster_error import Cancelled, ClusterError, Unreachable
from .config import ClusterConfig
from .liveness import fencing_probes
from .markers import FenceMethod, write_marker
from .steps import Cancellation

logger = logging.getLogger("fencing")


class FenceState(Enum):
    IDLE = "Idle"
    PRECHECK = "Precheck"
    SOFT_FENCE = "SoftFence"
    VERIFY = "Verify"
    ESCALATE_HARD = "EscalateHard"
    HARD_FENCE = "HardFence"
    FENCED = "Fenced"
    FENCE_FAILED = "FenceFailed"


class FencingOutcome:
    def __init__(self, node):
        self.node = node
        self.state = FenceState.IDLE
        self.history = [FenceState.IDLE]
        self.method = None
        self.verified = False
        self.timestamp = None
        self.marker = None
        self.reason = None

    @property
    def fenced(self):
        return self.state == FenceState.FENCED

    def __repr__(self):
        method = self.method.value if self.method else None
        return (f"<FencingOutcome {self.node.name} {self.state.value} "
                f"method={method}>")


class FencingCoordinator:
    """
    Soft fencing (stop the control plane and the database, then check
    nothing is left running), escalating to a BMC power off when the node
    can't be reached or soft fencing can't be verified.
    """

    def __init__(self, config: ClusterConfig, cancellation=None, probes=None,
                 now=datetime.now):
        self.config = config
        self.cancellation = cancellation or Cancellation()
        self.probes = probes
        self.now = now

    def _probes_for(self, node):
        return self.probes if self.probes is not None else fencing_probes(node)

    @staticmethod
    def _to(outcome, state, detail=""):
        outcome.state = state
        outcome.history.append(state)
        logger.info(f"{outcome.node.name}: {state.value}"
                    + (f": {detail}" if detail else ""))

    def fence(self, node) -> FencingOutcome:
        outcome = FencingOutcome(node)
        try:
            self._fence(node, outcome)
        except Cancelled as e:
            self._failed(outcome, str(e))
        return outcome

    def _fence(self, node, outcome):
        self._to(outcome, FenceState.PRECHECK)
        if self._precheck(node):
            self.cancellation.check(FenceState.SOFT_FENCE.value)
            self._to(outcome, FenceState.SOFT_FENCE)
            self._soft_fence(node)
            self._to(outcome, FenceState.VERIFY)
            if self._verify(node):
                self._fenced(outcome, FenceMethod.SOFT)
                return
            self._to(outcome, FenceState.ESCALATE_HARD,
                     "soft fencing could not be verified")
        else:
            self._to(outcome, FenceState.ESCALATE_HARD,
                     f"{node.address} unreachable")
        self.cancellation.check(FenceState.HARD_FENCE.value)
        self._to(outcome, FenceState.HARD_FENCE, node.bmc_address)
        if self._hard_fence(node):
            self._fenced(outcome, FenceMethod.HARD)
        else:
            self._failed(outcome, f"power off of {node.bmc_address} failed")

    def _precheck(self, node) -> bool:
        """ False only when the node is unreachable """
        for probe in self._probes_for(node):
            try:
                residual = probe.residual(node)
            except Unreachable as e:
                logger.warning(f"{node.name}: unreachable: {e}")
                return False
            except ClusterError as e:
                logger.warning(f"{node.name}: {probe.label} status unknown: {e}")
                continue
            state = "UP" if residual else "DOWN"
            logger.info(f"{node.name}: STATUS {probe.label}={state}")
        return True

    def _soft_fence(self, node):
        # exit codes are only logged, Verify decides
        if node.mc_enabled:
            res = node.mc_force_stop()
            logger.info(f"{node.name}: control plane stop: {res!r}")
        res = node.pg_stop(mode="immediate")
        logger.info(f"{node.name}: database stop: {res!r}")

    def _verify(self, node) -> bool:
        ok = True
        for probe in self._probes_for(node):
            try:
                residual = probe.residual(node)
            except ClusterError as e:
                logger.warning(
                    f"{node.name}: verify {probe.label} failed: {e}")
                return False
            if residual:
                ok = False
                logger.warning(
                    f"{node.name}: {probe.label} still running:\n"
                    + "\n".join(residual))
        return ok

    def _hard_fence(self, node) -> bool:
        status = node.bmc_power_status()
        logger.info(f"{node.name}: power status before off: "
                    f"{status.stdout.strip() or status.stderr.strip()}")
        res = node.bmc_power_off()
        if not res.ok:
            logger.error(f"{node.name}: power off returned "
                         f"{res.exit_status}: {res.stderr.strip()}")
        return res.ok

    def _fenced(self, outcome, method):
        outcome.method = method
        outcome.verified = True
        outcome.timestamp = self.now()
        self._to(outcome, FenceState.FENCED, f"by {method.value} fencing")
        try:
            outcome.marker = write_marker(
                self.config.marker_dir, outcome.node, method,
                outcome.timestamp)
        except OSError as e:
            logger.error(f"could not write fencing marker: {e}")

    def _failed(self, outcome, reason):
        outcome.reason = reason
        self._to(outcome, FenceState.FENCE_FAILED, reason)
