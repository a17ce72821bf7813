from .ssh import Ssh


class MirroringController(Ssh):
    """ the control plane supervising the pair (mc_ctl -M <mc_dir>) """

    def __init__(self, *, mc_ctl=None, mc_dir=None, **kwargs):
        super(MirroringController, self).__init__(**kwargs)
        self.mc_ctl = mc_ctl
        self.mc_dir = mc_dir

    @property
    def mc_enabled(self):
        return bool(self.mc_ctl)

    def _mc(self, args, timeout=None):
        cmd = f"{self.mc_ctl} {args} -M {self.mc_dir}"
        if timeout:
            cmd = f"timeout {timeout}s {cmd}"
        return self.ssh_run(cmd)

    def mc_start(self, failover=True):
        return self._mc("start" if failover else "start -F")

    def mc_stop(self):
        return self._mc("stop")

    def mc_force_stop(self):
        return self._mc("stop -e")

    def mc_status(self):
        return self._mc("status")

    def mc_stop_mc_only(self, timeout):
        return self._mc("stop --mc-only", timeout)

    def mc_start_mc_only(self, timeout):
        return self._mc("start --mc-only", timeout)
