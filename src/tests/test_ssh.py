import pytest

from pgrolelib.cluster_error import (
    CommandFailed, Unreachable, VerificationFailed)
from pgrolelib.node import Node
from pgrolelib.postgres import lag_bytes, lsn_to_int, slot_identifier
from pgrolelib.ssh import CommandResult, is_local_host


def local_node(**kwargs):
    return Node(name="local", address="127.0.0.1", ssh_user="postgres",
                pg_bindir="/usr/bin", pg_data_directory="/tmp/pgdata",
                **kwargs)


def test_command_result_check():
    assert CommandResult("true", 0).check().ok
    with pytest.raises(CommandFailed) as e:
        CommandResult("false", 1, "out", "err").check()
    assert "err" in str(e.value)
    with pytest.raises(Unreachable):
        CommandResult("true", unreachable=True).check()


def test_local_host():
    assert is_local_host("127.0.0.1")
    assert is_local_host("localhost")
    assert not is_local_host("192.0.2.250")


def test_local_commands_run_without_ssh(tmp_path):
    node = local_node()
    assert node.is_local
    assert node.ssh_run_check("echo hi") == "hi\n"
    res = node.ssh_run("exit 3")
    assert res.exit_status == 3 and not res.unreachable

    path = tmp_path / "postgresql.auto.conf"
    assert node.read_file(path) is None
    node.write_file(path, "a = 'b'\n")
    assert node.read_file(path) == "a = 'b'\n"


def test_lsn():
    assert lsn_to_int("0/3000060") == 0x3000060
    assert lsn_to_int("1/0") == 4294967296
    assert lag_bytes("1/10", "0/FFFFFFF0") == 0x20
    assert lag_bytes("0/10", "0/20") == 0
    assert lag_bytes("0/10", None) is None


@pytest.mark.parametrize("lsn", ["", "16/B374D848/1", "garbage", "0/XYZ"])
def test_malformed_lsn(lsn):
    with pytest.raises(VerificationFailed):
        lsn_to_int(lsn)


def test_slot_identifier():
    assert slot_identifier("PG-Node.2_slot") == "pg_node_2_slot"

