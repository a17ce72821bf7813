class ClusterError(Exception):
    pass


class ConfigurationError(ClusterError):
    pass


class Unreachable(ClusterError):
    pass


class CommandFailed(ClusterError):
    pass


class VerificationFailed(ClusterError):
    pass


class PrivilegeInsufficient(ClusterError):
    pass


class SplitBrainError(ClusterError):
    def __init__(self, nodes):
        self.nodes = list(nodes)
        names = ", ".join(n.name for n in self.nodes)
        super(SplitBrainError, self).__init__(
            f"SPLIT BRAIN: more than one node reports not in recovery: {names}")


class Cancelled(ClusterError):
    def __init__(self, step, signum=None):
        self.step = step
        self.signum = signum
        super(Cancelled, self).__init__(
            f"cancelled (signal {signum}) before {step}")


class StepFailed(ClusterError):
    def __init__(self, step, reason):
        self.step = step
        self.reason = reason
        super(StepFailed, self).__init__(f"{step} failed: {reason}")
