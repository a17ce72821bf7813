import os
import shutil
from subprocess import run, PIPE, DEVNULL, TimeoutExpired

from .cluster_error import ConfigurationError
from .ssh import CommandResult


class Bmc:
    """
    Out of band power control, ipmitool runs on the host executing the
    fencing, never on the node being fenced.
    """

    def __init__(self, *, ipmi_cmd="ipmitool", ipmi_user=None,
                 ipmi_password=None, ipmi_interface="lanplus",
                 ipmi_timeout=30, **kwargs):
        super(Bmc, self).__init__(**kwargs)
        self.ipmi_cmd = ipmi_cmd
        self.ipmi_user = ipmi_user
        self.ipmi_password = ipmi_password
        self.ipmi_interface = ipmi_interface
        self.ipmi_timeout = ipmi_timeout

    def bmc_validate(self):
        if not self.bmc_address:
            raise ConfigurationError(f"{self.name}: no bmc_address configured")
        if not shutil.which(self.ipmi_cmd):
            raise ConfigurationError(f"{self.ipmi_cmd} not found")

    def bmc_run(self, args) -> CommandResult:
        cmd = [self.ipmi_cmd, "-I", self.ipmi_interface, "-H",
               self.bmc_address]
        if self.ipmi_user:
            cmd += ["-U", self.ipmi_user]
        env = dict(os.environ)
        if self.ipmi_password is not None:
            cmd.append("-E")
            env["IPMI_PASSWORD"] = self.ipmi_password
        cmd += args
        command = " ".join(cmd)
        self.log(f"bmc: [{command}]")
        try:
            res = run(cmd, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, env=env,
                      timeout=self.ipmi_timeout)
        except TimeoutExpired:
            return CommandResult(
                command, stderr=f"timed out after {self.ipmi_timeout} seconds")
        except OSError as e:
            return CommandResult(command, stderr=str(e))
        return CommandResult(
            command, res.returncode,
            res.stdout.decode("utf-8", "replace"),
            res.stderr.decode("utf-8", "replace"))

    def bmc_power_status(self) -> CommandResult:
        return self.bmc_run(["chassis", "power", "status"])

    def bmc_power_off(self) -> CommandResult:
        return self.bmc_run(["chassis", "power", "off"])
