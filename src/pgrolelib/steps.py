import logging
from enum import Enum
from time import sleep, time

from .cluster_error import Cancelled, ClusterError, StepFailed

logger = logging.getLogger("steps")


class StepOutcome(Enum):
    SUCCEEDED = "succeeded"
    WARNED = "warned"
    SKIPPED = "skipped"
    FAILED = "failed"


class TransitionStep:
    def __init__(self, name, outcome: StepOutcome, detail=""):
        self.name = name
        self.outcome = outcome
        self.detail = detail

    def __repr__(self):
        return f"<TransitionStep {self.name} {self.outcome.value}>"


class Cancellation:
    """ set from a signal handler, looked at between stages only """

    def __init__(self):
        self.signum = None

    @property
    def requested(self):
        return self.signum is not None

    def request(self, signum, frame=None):
        logger.warning(f"received signal {signum}, stopping at next stage")
        self.signum = signum

    def check(self, step):
        if self.requested:
            raise Cancelled(step, self.signum)


def wait_until(condition, *, timeout, interval):
    """
    Calls condition() until it returns something true or timeout seconds
    have passed, returns its last answer.
    """
    deadline = time() + timeout
    while True:
        ans = condition()
        if ans or time() >= deadline:
            return ans
        sleep(interval)


class PipelineResult:
    def __init__(self):
        self.steps = []
        self.aborted_step = None
        self.reason = None

    @property
    def success(self):
        return self.aborted_step is None

    def abort(self, step, reason):
        self.aborted_step = step
        self.reason = reason


class Pipeline:
    """
    Runs named stages in order. A stage returns None or an
    (outcome, detail) pair; a ClusterError from it aborts the rest.
    """
    name = "pipeline"

    def __init__(self, config, cancellation=None):
        self.config = config
        self.cancellation = cancellation or Cancellation()
        self.logger = logging.getLogger(self.name)
        self.result = None

    def _run_steps(self, steps, *args, uninterruptible=()):
        """ returns False when a stage failed or the run was cancelled """
        try:
            for step in steps:
                if step not in uninterruptible:
                    self.cancellation.check(step.value)
                self._run_step(step, *args)
        except StepFailed as e:
            self.result.abort(e.step, e.reason)
        except Cancelled as e:
            self.result.abort(e.step, str(e))
        else:
            return True
        self.logger.error(
            f"{self.name} aborted at {self.result.aborted_step}: "
            f"{self.result.reason}")
        return False

    def _run_step(self, step, *args):
        self.logger.info(f"== {step.value}")
        stage = getattr(self, f"_{step.name.lower()}")
        try:
            ans = stage(*args)
        except ClusterError as e:
            self.result.steps.append(
                TransitionStep(step.value, StepOutcome.FAILED, str(e)))
            raise StepFailed(step.value, str(e))
        outcome, detail = ans if ans else (StepOutcome.SUCCEEDED, "")
        self.result.steps.append(TransitionStep(step.value, outcome, detail))
        self.logger.info(f"{step.value}: {outcome.value}"
                         + (f": {detail}" if detail else ""))
