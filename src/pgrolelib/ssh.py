import os
import socket
from contextlib import contextmanager
from functools import lru_cache
from subprocess import run, PIPE, DEVNULL, TimeoutExpired

from paramiko import (
    SSHClient, AutoAddPolicy, SSHException, AuthenticationException)

from .cluster_error import CommandFailed, Unreachable
from .node_base import NodeBase


class CommandResult:
    def __init__(self, command, exit_status=None, stdout="", stderr="",
                 unreachable=False):
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        self.unreachable = unreachable

    @property
    def ok(self):
        return not self.unreachable and self.exit_status == 0

    def check(self):
        if self.unreachable:
            raise Unreachable(f"unreachable for:\n{self.command}\n{self.stderr}")
        if self.exit_status != 0:
            raise CommandFailed(
                f"got exit status {self.exit_status} for:\n"
                f"{self.command}\n"
                f"stdout: {self.stdout}\n"
                f"stderr: {self.stderr}")
        return self

    def __repr__(self):
        if self.unreachable:
            return f"<CommandResult unreachable {self.command!r}>"
        return f"<CommandResult {self.exit_status} {self.command!r}>"


@lru_cache(maxsize=None)
def local_addresses():
    names = {"localhost", "127.0.0.1", "::1"}
    hostname = socket.gethostname()
    names.update({hostname, hostname.split(".")[0], socket.getfqdn()})
    try:
        names.update(socket.gethostbyname_ex(hostname)[2])
    except OSError:
        pass
    try:
        for info in socket.getaddrinfo(hostname, None):
            names.add(info[4][0])
    except OSError:
        pass
    return frozenset(names)


def is_local_host(address):
    return address in local_addresses()


class Ssh(NodeBase):
    def __init__(self, *, ssh_user, ssh_timeout=10, ssh_key_file=None,
                 command_timeout=600, **kwargs):
        super(Ssh, self).__init__(**kwargs)
        self.ssh_user = ssh_user
        self.ssh_timeout = ssh_timeout
        self.ssh_key_file = ssh_key_file
        self.command_timeout = command_timeout
        self._is_local = None

    @property
    def is_local(self):
        if self._is_local is None:
            self._is_local = is_local_host(self.address)
        return self._is_local

    @contextmanager
    def open_ssh(self):
        user = self.ssh_user
        with SSHClient() as client:
            client.set_missing_host_key_policy(AutoAddPolicy())
            try:
                client.connect(
                    self.address, username=user,
                    key_filename=self.ssh_key_file,
                    timeout=self.ssh_timeout,
                    banner_timeout=self.ssh_timeout,
                    auth_timeout=self.ssh_timeout)
            except AuthenticationException as e:
                raise Unreachable(
                    f"AuthenticationException {user}@{self.address} "
                    f"({self.name}):\n{e}")
            except (SSHException, OSError) as e:
                raise Unreachable(
                    f"{type(e).__name__} {user}@{self.address} "
                    f"({self.name}):\n{e}")
            yield client

    @contextmanager
    def open_sftp(self):
        with self.open_ssh() as ssh:
            with ssh.open_sftp() as sftp:
                yield sftp

    def _remote_run(self, command, timeout) -> CommandResult:
        self.log(f"{self.ssh_user}@{self.address}: [{command}]")
        try:
            with self.open_ssh() as ssh:
                i, o, e = ssh.exec_command(command, timeout=timeout)
                i.close()
                stdout = o.read().decode("utf-8", "replace")
                stderr = e.read().decode("utf-8", "replace")
                exit_status = o.channel.recv_exit_status()
        except Unreachable as e:
            self.log(str(e))
            return CommandResult(command, stderr=str(e), unreachable=True)
        except socket.timeout:
            return CommandResult(
                command, stderr=f"timed out after {timeout} seconds")
        except SSHException as e:
            return CommandResult(command, stderr=f"SSHException: {e}")
        return CommandResult(command, exit_status, stdout, stderr)

    def _local_run(self, command, timeout) -> CommandResult:
        self.log(f"local: [{command}]")
        env = {k: v for k, v in os.environ.items() if k != "LD_LIBRARY_PATH"}
        try:
            res = run(["bash", "-c", command], stdin=DEVNULL, stdout=PIPE,
                      stderr=PIPE, timeout=timeout, env=env)
        except TimeoutExpired:
            return CommandResult(
                command, stderr=f"timed out after {timeout} seconds")
        return CommandResult(
            command, res.returncode,
            res.stdout.decode("utf-8", "replace"),
            res.stderr.decode("utf-8", "replace"))

    def ssh_run(self, command, *, check=False, timeout=None) -> CommandResult:
        timeout = timeout or self.command_timeout
        if self.is_local:
            result = self._local_run(command, timeout)
        else:
            result = self._remote_run(command, timeout)
        if not result.ok:
            self.log(f"{result!r}\nstdout: {result.stdout}\n"
                     f"stderr: {result.stderr}")
        if check:
            result.check()
        return result

    def ssh_run_check(self, command, **kwargs) -> str:
        return self.ssh_run(command, check=True, **kwargs).stdout

    def ssh_ping(self) -> bool:
        res = self.ssh_run("echo ok", timeout=self.ssh_timeout)
        return res.ok and res.stdout.strip() == "ok"

    def read_file(self, path):
        """ returns None when the file does not exist """
        path = str(path)
        self.log(f"reading {path}")
        try:
            if self.is_local:
                with open(path) as f:
                    return f.read()
            with self.open_sftp() as sftp:
                with sftp.file(path) as f:
                    return f.read().decode("utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CommandFailed(f"can't read {path} on {self.name}: {e}")

    def write_file(self, path, content: str):
        path = str(path)
        tmp = f"{path}.pgrole.tmp"
        self.log(f"writing {path}")
        try:
            if self.is_local:
                with open(tmp, "w") as f:
                    f.write(content)
                os.replace(tmp, path)
                return
            with self.open_sftp() as sftp:
                with sftp.file(tmp, "w") as f:
                    f.write(content)
                sftp.posix_rename(tmp, path)
        except OSError as e:
            raise CommandFailed(f"can't write {path} on {self.name}: {e}")
