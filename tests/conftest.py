from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from warden.host import HostRunner


class FakeHostRunner(HostRunner):
    """HostRunner returning canned output; unknown commands fail like a missing binary."""

    def __init__(self, commands=None, files=None, modes=None):
        self.commands = dict(commands or {})
        self.files = dict(files or {})
        self.modes = dict(modes or {})
        self.calls = []

    def run(self, cmd, timeout=None):
        self.calls.append(list(cmd))
        return self.commands.get(tuple(cmd), (-1, "", "not found"))

    def read_text(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def iter_lines(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        yield from self.files[path].splitlines()

    def file_mode(self, path):
        if path not in self.modes:
            raise FileNotFoundError(path)
        return self.modes[path]

    def calls_starting_with(self, *prefix):
        return [call for call in self.calls if tuple(call[:len(prefix)]) == prefix]


@pytest.fixture
def runner():
    return FakeHostRunner()
