import re
from collections import OrderedDict

from .cluster_error import CommandFailed


def quote(value) -> str:
    return "'" + str(value).replace("'", "''") + "'"


class PgConfigReader(OrderedDict):
    RE_COMMENT = re.compile(r"\s*#.*")
    RE_EMPTY = re.compile(r"\s*")
    RE_SETTING = re.compile(r"\s*(\w[\w.]*)(\s*=\s*|\s+)(.*?)\s*")
    RE_VALUE = re.compile(r"(?:'((?:[^']|'')*)'(?:\s*#.*)?)|(?:([^'#\s]*)(?:\s*#.*)?)")

    def __init__(self, conf: str = "", *args, **kwds):
        super().__init__(*args, **kwds)
        for line in conf.splitlines():
            self._parse_conf_line(line)

    def _parse_conf_line(self, line):
        if self.RE_COMMENT.fullmatch(line) or self.RE_EMPTY.fullmatch(line):
            return
        m = self.RE_SETTING.fullmatch(line)
        if not m:
            raise CommandFailed(f"can't parse this line:\n{line}")
        k, _, value_part = m.groups()
        m = self.RE_VALUE.fullmatch(value_part)
        if not m:
            raise CommandFailed(
                f"can't parse value {value_part} from this line:\n{line}")
        quoted, bare = m.groups()
        self[k] = quoted.replace("''", "'") if quoted is not None else bare


class ConfFile:
    """
    Line based rewrite of postgresql.conf / postgresql.auto.conf.

    Settings are removed by key and appended at the end, so applying the same
    settings twice gives the same text.
    """

    def __init__(self, text=None):
        self.lines = (text or "").splitlines()

    @staticmethod
    def _key_re(key, include_commented):
        prefix = r"\s*#?\s*" if include_commented else r"\s*"
        return re.compile(rf"{prefix}{re.escape(key)}\s*(=|\s)")

    def remove(self, key, include_commented=False):
        r = self._key_re(key, include_commented)
        self.lines = [l for l in self.lines if not r.match(l)]
        return self

    def update(self, settings, include_commented=False):
        for key in settings:
            self.remove(key, include_commented)
        for key, value in settings.items():
            self.lines.append(f"{key} = {quote(value)}")
        return self

    def __str__(self):
        return "".join(f"{l}\n" for l in self.lines)


def conninfo(**params) -> str:
    return " ".join(f"{k}={v}" for k, v in params.items() if v is not None)
