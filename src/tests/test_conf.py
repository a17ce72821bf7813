import pytest

from pgrolelib.cluster_error import CommandFailed
from pgrolelib.conf import ConfFile, PgConfigReader, conninfo, quote


def test_pg_config_reader():
    conf = PgConfigReader(
        "# comment\n"
        "\n"
        "port = 5433\n"
        "listen_addresses='*'   # everywhere\n"
        "primary_conninfo = 'host=a user=b password=''x'''\n"
        "hot_standby on\n")
    assert conf == {
        "port": "5433",
        "listen_addresses": "*",
        "primary_conninfo": "host=a user=b password='x'",
        "hot_standby": "on",
    }


def test_pg_config_reader_bad_line():
    with pytest.raises(CommandFailed):
        PgConfigReader("= oops\n")


def test_update_replaces_and_appends():
    conf = ConfFile(
        "wal_level = 'replica'\n"
        "primary_conninfo = 'host=old'\n"
        "primary_conninfo_extra = 'kept'\n")
    conf.update({"primary_conninfo": "host=new", "primary_slot_name": "s1"})
    assert str(conf) == (
        "wal_level = 'replica'\n"
        "primary_conninfo_extra = 'kept'\n"
        "primary_conninfo = 'host=new'\n"
        "primary_slot_name = 's1'\n")


def test_update_twice_is_byte_identical():
    settings = {"primary_conninfo": "host=new", "primary_slot_name": "s1"}
    once = str(ConfFile("a = 1\nprimary_slot_name = 'x'").update(settings))
    twice = str(ConfFile(once).update(settings))
    assert once == twice


def test_commented_settings_are_removed_only_when_asked():
    text = ("#synchronous_standby_names = ''\n"
            "  # synchronous_standby_names = 'x'\n"
            "synchronous_standby_names = 'y'\n")
    assert str(ConfFile(text).remove("synchronous_standby_names")) == (
        "#synchronous_standby_names = ''\n"
        "  # synchronous_standby_names = 'x'\n")
    conf = ConfFile(text).update(
        {"synchronous_standby_names": "standby"}, include_commented=True)
    assert str(conf) == "synchronous_standby_names = 'standby'\n"
    assert PgConfigReader(str(conf))["synchronous_standby_names"] == "standby"


def test_empty_or_missing_file():
    assert str(ConfFile(None)) == ""
    assert str(ConfFile(None).update({"a": "b"})) == "a = 'b'\n"


def test_quote_and_conninfo():
    assert quote("it's") == "'it''s'"
    assert conninfo(host="h", port=5432, user="u", sslmode=None) == \
        "host=h port=5432 user=u"
