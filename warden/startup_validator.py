"""
Runtime self-check for Warden.

Reports whether the Python libraries the panel core imports can be loaded and
which host tools the security checks and firewall bans rely on. Only this
module and warden.host are imported on the self-check path, so a missing
library shows up in the report instead of crashing the command.
"""

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .host import HostRunner, SubprocessHostRunner

logger = logging.getLogger(__name__)

OK = "OK"
MISSING = "MISSING"
ERROR = "ERROR"
ABSENT = "ABSENT"


@dataclass(frozen=True)
class Requirement:
    name: str
    used_for: str
    # Python module to import; None means an executable looked up on PATH
    module: Optional[str] = None
    hint: str = ""

    @property
    def is_library(self) -> bool:
        return self.module is not None


LIBRARIES: List[Requirement] = [
    Requirement("psutil", "process and system metrics", module="psutil",
                hint="Install it with pip install psutil or the python3-psutil package."),
    Requirement("tabulate", "CLI tables", module="tabulate",
                hint="Install it with pip install tabulate or the python3-tabulate package."),
]

HOST_TOOLS: List[Requirement] = [
    Requirement("iptables", "OS-level IP bans"),
    Requirement("ss", "open port check"),
    Requirement("ps", "suspicious process check"),
    Requirement("apt", "pending update check"),
]


@dataclass
class CheckResult:
    requirement: Requirement
    label: str
    detail: str = ""

    @property
    def blocking(self) -> bool:
        """An unusable library stops Warden; an absent tool only degrades one check."""
        return self.label in (MISSING, ERROR)

    def line(self) -> str:
        req = self.requirement
        if req.is_library:
            text = f"{req.name} ({req.used_for})"
            if self.blocking:
                text += f": {self.detail}. {req.hint}"
        else:
            text = f"host tool {req.name}"
            if self.label == ABSENT:
                text += f" ({req.used_for} will report warnings)"
        return f"[{self.label:<7}] {text}"


def _import(module: str):
    return importlib.import_module(module)


def check_library(requirement: Requirement, importer: Callable[[str], object] = _import) -> CheckResult:
    try:
        importer(requirement.module)
    except ModuleNotFoundError as e:
        logger.debug(f"{requirement.name} not installed: {e}")
        return CheckResult(requirement, MISSING, "not installed")
    except Exception as e:
        # A broken C extension can fail with anything; report it rather than crash
        logger.debug(f"{requirement.name} failed to import: {e}")
        return CheckResult(requirement, ERROR, f"installed but failed to load ({e})")
    return CheckResult(requirement, OK)


def check_tool(requirement: Requirement, runner: HostRunner) -> CheckResult:
    return CheckResult(requirement, OK if runner.which(requirement.name) else ABSENT)


def collect_results(
    importer: Callable[[str], object] = _import,
    runner: Optional[HostRunner] = None,
) -> List[CheckResult]:
    runner = runner or SubprocessHostRunner()
    results = [check_library(req, importer) for req in LIBRARIES]
    results += [check_tool(req, runner) for req in HOST_TOOLS]
    return results


def run_self_check(
    importer: Callable[[str], object] = _import,
    runner: Optional[HostRunner] = None,
) -> bool:
    """Print the self-check report. Returns False if a required library is unusable."""
    results = collect_results(importer, runner)

    print("Running Warden dependency self-check...\n")
    for result in results:
        print(result.line())

    if any(result.blocking for result in results):
        print("\nWarden cannot run until the libraries marked above are installed.")
        return False

    print("\nAll required libraries available.")
    return True
