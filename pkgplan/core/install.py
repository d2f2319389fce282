"""
Apply ordering and apply engines

order_plan() turns a Plan into ApplySteps: removals first (dependents
before what they depend on), then installs (dependencies first). Cycles
are kept together using strongly connected components.

Apply engines run the steps strictly one after the other.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from .cancel import is_cancelled
from .errors import ApplyFailed, OrderingError
from .graph import RelationKind
from .state import Mode

logger = logging.getLogger(__name__)


class StepAction(Enum):
    INSTALL = "install"
    REMOVE = "remove"
    PURGE = "purge"


class ApplyStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"


@dataclass
class ApplyStep:
    """One package operation, in apply order."""
    action: StepAction
    package: str
    version: Optional[str] = None
    path: Optional[Path] = None

    def __str__(self) -> str:
        version = f" {self.version}" if self.version else ""
        return f"{self.action.value} {self.package}{version}"


@dataclass
class ApplyOutcome:
    status: ApplyStatus
    applied: List[ApplyStep] = field(default_factory=list)
    remaining: List[ApplyStep] = field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Ordering
# =============================================================================

def find_sccs(graph: Dict[str, Set[str]]) -> List[List[str]]:
    """Find strongly connected components using Tarjan's algorithm.

    An edge a -> b means a depends on b. Components come out with
    dependencies first.
    """
    counter = [0]
    stack = []
    lowlinks = {}
    index = {}
    on_stack = set()
    sccs = []

    def strongconnect(node):
        index[node] = lowlinks[node] = counter[0]
        counter[0] += 1
        stack.append(node)
        on_stack.add(node)

        for successor in sorted(graph.get(node, ())):
            if successor not in index:
                strongconnect(successor)
                lowlinks[node] = min(lowlinks[node], lowlinks[successor])
            elif successor in on_stack:
                lowlinks[node] = min(lowlinks[node], index[successor])

        if lowlinks[node] == index[node]:
            scc = []
            while True:
                w = stack.pop()
                on_stack.discard(w)
                scc.append(w)
                if w == node:
                    break
            sccs.append(sorted(scc))

    for node in sorted(graph):
        if node not in index:
            strongconnect(node)
    return sccs


def _dependency_graph(entries) -> Dict[str, Set[str]]:
    """name -> names of other entries its version depends on."""
    graph = {entry.name: set() for entry in entries}
    for entry in entries:
        ver = entry.version
        for group in ver.relations.get(RelationKind.DEPENDS, ()):
            for rel in group:
                for other in entries:
                    if other.name != entry.name and other.version.satisfies(rel):
                        graph[entry.name].add(other.name)
    return graph


def _flatten(sccs: List[List[str]]) -> List[str]:
    return [name for scc in sccs for name in scc]


def order_plan(plan, paths: Optional[Dict[str, Path]] = None) -> List[ApplyStep]:
    """Compute the apply order of a plan.

    Args:
        plan: Accepted Plan
        paths: package name -> artifact path for installs

    Raises:
        OrderingError: an entry has nothing to apply
    """
    paths = paths or {}
    for entry in list(plan.install) + list(plan.delete):
        if entry.version is None:
            raise OrderingError(f"Nothing to apply for {entry.name}", package=entry.name)

    steps: List[ApplyStep] = []

    by_name = {entry.name: entry for entry in plan.delete}
    removal_order = list(reversed(_flatten(find_sccs(_dependency_graph(plan.delete)))))
    for name in removal_order:
        entry = by_name[name]
        action = StepAction.PURGE if entry.mode == Mode.PURGE else StepAction.REMOVE
        steps.append(ApplyStep(action, name, entry.version.version))

    by_name = {entry.name: entry for entry in plan.install}
    for name in _flatten(find_sccs(_dependency_graph(plan.install))):
        entry = by_name[name]
        steps.append(ApplyStep(StepAction.INSTALL, name, entry.version.version, paths.get(name)))

    logger.debug(f"Apply order: {', '.join(str(s) for s in steps)}")
    return steps


# =============================================================================
# Engines
# =============================================================================

class ApplyEngine:
    """Sequential step runner; subclasses implement apply_step()."""

    def apply(self, steps: Sequence[ApplyStep], cancel=None) -> ApplyOutcome:
        """Apply steps in order.

        Stops with INCOMPLETE when cancelled or when an artifact has gone
        missing, and with FAILED when a step fails. Nothing is rolled back.
        """
        steps = list(steps)
        applied: List[ApplyStep] = []
        for i, step in enumerate(steps):
            if is_cancelled(cancel):
                return ApplyOutcome(ApplyStatus.INCOMPLETE, applied, steps[i:], "Cancelled")
            if step.action == StepAction.INSTALL and step.path is not None \
                    and not step.path.exists():
                logger.warning(f"{step.path} disappeared before {step.package} was installed")
                return ApplyOutcome(ApplyStatus.INCOMPLETE, applied, steps[i:],
                                    f"{step.path} is missing")
            try:
                self.apply_step(step)
            except ApplyFailed as e:
                logger.error(f"{step} failed: {e}")
                return ApplyOutcome(ApplyStatus.FAILED, applied, steps[i:], str(e))
            applied.append(step)
        return ApplyOutcome(ApplyStatus.COMPLETED, applied)

    def apply_step(self, step: ApplyStep):
        raise NotImplementedError


class SimulatedApplyEngine(ApplyEngine):
    """Records steps without touching the system."""

    def __init__(self):
        self.applied: List[ApplyStep] = []

    def apply_step(self, step: ApplyStep):
        logger.info(f"Simulating {step}")
        self.applied.append(step)


class CommandApplyEngine(ApplyEngine):
    """Runs one shell command per step.

    Commands are format strings with {name}, {version} and {path}, e.g.
    "rpm -U --replacepkgs {path}" or "rpm -e {name}".
    """

    def __init__(self, install_command: str, remove_command: str,
                 purge_command: str = "", timeout: Optional[int] = None):
        self.commands = {
            StepAction.INSTALL: install_command,
            StepAction.REMOVE: remove_command,
            StepAction.PURGE: purge_command or remove_command,
        }
        self.timeout = timeout

    def build_command(self, step: ApplyStep) -> List[str]:
        template = self.commands[step.action]
        if not template:
            raise ApplyFailed(f"No command configured for {step.action.value}",
                              package=step.package)
        return [part.format(name=step.package, version=step.version or '',
                            path=str(step.path or ''))
                for part in shlex.split(template)]

    def apply_step(self, step: ApplyStep):
        cmd = self.build_command(step)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ApplyFailed(f"{step}: {e}", package=step.package)
        if result.returncode != 0:
            raise ApplyFailed(f"{step}: exit code {result.returncode}",
                              package=step.package, detail=result.stderr.strip() or None)
