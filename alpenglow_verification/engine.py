"""
Verification Strategy Selector

Picks an exploration strategy from the validator count (or an explicit
override), runs it and aggregates a per-property verdict:

- exhaustive: breadth-first search over an arena of states indexed by
  content fingerprint; counterexamples are shortest.
- bounded: depth-first search up to ``max_depth``; a state is revisited
  only when reached at a shallower depth.
- statistical: independent seeded random executions on a worker pool,
  reduced in the submitting thread into Wilson-score intervals.
"""

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import psutil

from .actions import MESSAGE_ACTIONS, Action
from .catalogue import successors
from .confidence import required_sample_size, wilson_interval
from .config import VerificationConfig
from .errors import ExplorationError
from .properties import (ALL_PROPERTIES, ALWAYS_PROPERTIES, PropertyKind, check_always,
                         check_eventually)
from .report import PropertyResult, Verdict, VerificationReport
from .state import ProtocolState, initial_states
from .trace import Trace, TraceStep

logger = logging.getLogger(__name__)


def memory_usage_mb() -> Optional[float]:
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


@dataclass
class _ArenaNode:
    state: ProtocolState
    parent: Optional[int]
    action: Optional[Action]
    depth: int


@dataclass
class _PathNode:
    """Search-tree node that keeps the path but not the state"""
    parent: Optional[int]
    action: Optional[Action]
    depth: int
    root: int


@dataclass
class SampleOutcome:
    """Result of one random execution"""
    index: int
    root: int
    steps: int
    completed: bool
    lost_messages: int
    violations: Dict[str, Tuple[str, List[Action]]] = field(default_factory=dict)


class VerificationEngine:
    """Runs one verification according to a configuration"""

    def __init__(self, config: VerificationConfig):
        self.config = config
        self.initial = initial_states(config)
        self.mode = config.resolved_mode()

    def run(self) -> VerificationReport:
        config = self.config
        logger.info(f"Verifying {config.validator_count} validators, {config.max_slot} slots "
                    f"in {self.mode} mode")
        start = time.perf_counter()

        if self.mode == "exhaustive":
            report = self.explore_exhaustive()
        elif self.mode == "bounded":
            report = self.explore_bounded()
        else:
            report = self.sample_statistical()

        report.metadata.update({
            'validators': config.validator_count,
            'initial_states': len(self.initial),
            'seconds': round(time.perf_counter() - start, 3),
            'memory_mb': memory_usage_mb(),
            'config': config.to_dict(),
        })
        for result in report.results.values():
            if result.violated:
                logger.warning(result.summary())
            else:
                logger.info(result.summary())
        logger.info(f"Verification finished in {report.metadata['seconds']}s")
        return report

    # Exhaustive

    def explore_exhaustive(self) -> VerificationReport:
        config = self.config
        arena: List[_ArenaNode] = []
        index: Dict[str, int] = {}
        queue = deque()

        for state in self.initial:
            index[state.fingerprint()] = len(arena)
            queue.append(len(arena))
            arena.append(_ArenaNode(state, None, None, 0))

        found: Dict[str, Tuple[str, int]] = {}
        complete_depth: Optional[int] = None
        terminals = 0
        max_depth = 0

        while queue:
            position = queue.popleft()
            node = arena[position]
            max_depth = max(max_depth, node.depth)
            for name, message in check_always(node.state).items():
                found.setdefault(name, (message, position))

            succ = successors(node.state)
            if not succ:
                terminals += 1
                for name, message in check_eventually(node.state).items():
                    found.setdefault(name, (message, position))
            if len(found) == len(ALL_PROPERTIES):
                logger.info("Every property violated, stopping exploration")
                break

            for action, nxt in succ:
                fingerprint = nxt.fingerprint()
                existing = index.get(fingerprint)
                if existing is not None:
                    if arena[existing].state != nxt:
                        raise ExplorationError("state fingerprint collision",
                                               {'fingerprint': fingerprint, 'depth': node.depth + 1})
                    continue
                if len(arena) >= config.max_states:
                    if complete_depth is None:
                        complete_depth = node.depth
                        logger.warning(f"State budget of {config.max_states} exhausted at depth "
                                       f"{node.depth + 1}")
                    continue
                index[fingerprint] = len(arena)
                queue.append(len(arena))
                arena.append(_ArenaNode(nxt, position, action, node.depth + 1))

            if position and position % 10000 == 0:
                logger.debug(f"{len(arena)} states, frontier {len(queue)}, depth {node.depth}")

        counterexamples = {name: (message, self._arena_trace(arena, position))
                           for name, (message, position) in found.items()}
        report = VerificationReport(mode="exhaustive")
        report.results = self._search_results(counterexamples, len(arena),
                                              complete=complete_depth is None,
                                              depth=complete_depth if complete_depth is not None else max_depth,
                                              terminals=terminals)
        report.metadata.update({'states_explored': len(arena), 'max_depth': max_depth,
                                'terminal_states': terminals,
                                'budget_exhausted': complete_depth is not None})
        return report

    @staticmethod
    def _arena_trace(arena: List[_ArenaNode], position: int) -> Trace:
        steps = []
        while arena[position].parent is not None:
            node = arena[position]
            steps.append(TraceStep(node.action, node.state))
            position = node.parent
        return Trace(arena[position].state, list(reversed(steps)))

    # Bounded

    def explore_bounded(self) -> VerificationReport:
        config = self.config
        nodes: List[_PathNode] = []
        best_depth: Dict[str, int] = {}
        stack: List[Tuple[int, ProtocolState]] = []

        for root, state in enumerate(self.initial):
            best_depth[state.fingerprint()] = 0
            nodes.append(_PathNode(None, None, 0, root))
            stack.append((len(nodes) - 1, state))

        found: Dict[str, Tuple[str, int]] = {}
        depth_limited = False
        min_dropped: Optional[int] = None
        terminals = 0

        def record(violations: Dict[str, str], position: int):
            for name, message in violations.items():
                current = found.get(name)
                if current is None or nodes[position].depth < nodes[current[1]].depth:
                    found[name] = (message, position)

        while stack:
            position, state = stack.pop()
            depth = nodes[position].depth
            record(check_always(state), position)

            succ = successors(state)
            if not succ:
                terminals += 1
                record(check_eventually(state), position)
                continue
            if depth >= config.max_depth:
                depth_limited = True
                continue

            for action, nxt in reversed(succ):
                fingerprint = nxt.fingerprint()
                if best_depth.get(fingerprint, config.max_depth + 1) <= depth + 1:
                    continue
                if len(nodes) >= config.max_states:
                    if min_dropped is None or depth + 1 < min_dropped:
                        min_dropped = depth + 1
                    continue
                best_depth[fingerprint] = depth + 1
                nodes.append(_PathNode(position, action, depth + 1, nodes[position].root))
                stack.append((len(nodes) - 1, nxt))

        if min_dropped is not None:
            logger.warning(f"State budget of {config.max_states} exhausted; complete to depth "
                           f"{min_dropped - 1}")
        verified_depth = config.max_depth if min_dropped is None else min(config.max_depth, min_dropped - 1)
        complete = not depth_limited and min_dropped is None

        counterexamples = {name: (message, self._path_trace(nodes, position))
                           for name, (message, position) in found.items()}
        report = VerificationReport(mode="bounded")
        report.results = self._search_results(counterexamples, len(nodes), complete, verified_depth,
                                              terminals)
        report.metadata.update({'states_explored': len(nodes), 'max_depth': config.max_depth,
                                'terminal_states': terminals,
                                'budget_exhausted': min_dropped is not None})
        return report

    def _path_trace(self, nodes: List[_PathNode], position: int) -> Trace:
        actions = []
        while nodes[position].parent is not None:
            actions.append(nodes[position].action)
            position = nodes[position].parent
        return Trace.from_actions(self.initial[nodes[position].root], list(reversed(actions)))

    def _search_results(self, counterexamples: Dict[str, Tuple[str, Trace]], states: int,
                        complete: bool, depth: int, terminals: int) -> Dict[str, PropertyResult]:
        """Per-property verdicts of a search.

        Eventually-properties are only evaluated on terminal states, so a
        search that reached none has no evidence for them.
        """
        results = {}
        for prop in ALL_PROPERTIES:
            result = PropertyResult(prop.name, prop.kind.value, Verdict.VERIFIED,
                                    states_checked=states, depth=depth)
            if prop.name in counterexamples:
                message, trace = counterexamples[prop.name]
                result.verdict = Verdict.VIOLATED
                result.message = message
                result.counterexample = trace
                result.violations = 1
            elif prop.kind is PropertyKind.EVENTUALLY and terminals == 0:
                result.verdict = Verdict.INDETERMINATE
                result.message = f"no terminal state reached within depth {depth}"
                logger.warning(f"{prop.name}: {result.message}")
            elif complete:
                result.confidence = 1.0
            else:
                result.verdict = Verdict.VERIFIED_UP_TO_DEPTH
            results[prop.name] = result
        return results

    # Statistical

    def run_sample(self, index: int) -> SampleOutcome:
        """One random execution, reproducible from (seed, index)"""
        config = self.config
        rng = np.random.default_rng([config.seed, index])
        root = index % len(self.initial)
        state = self.initial[root]
        actions: List[Action] = []
        lost: Set[Action] = set()
        outcome = SampleOutcome(index, root, 0, False, 0)

        while True:
            for name, message in check_always(state).items():
                if name not in outcome.violations:
                    outcome.violations[name] = (message, list(actions))
            succ = successors(state, lost)
            if not succ:
                outcome.completed = True
                for name, message in check_eventually(state).items():
                    outcome.violations[name] = (message, list(actions))
                break
            if len(actions) >= config.max_steps:
                break
            action, nxt = succ[int(rng.integers(len(succ)))]
            if isinstance(action, MESSAGE_ACTIONS) and config.loss_rate > 0 \
                    and rng.random() < config.loss_rate:
                lost.add(action)
                continue
            actions.append(action)
            state = nxt

        outcome.steps = len(actions)
        outcome.lost_messages = len(lost)
        return outcome

    def sample_statistical(self) -> VerificationReport:
        config = self.config
        deadline = None
        if config.time_budget_seconds is not None:
            deadline = time.monotonic() + config.time_budget_seconds
        outcomes: List[SampleOutcome] = []
        partial = False
        batch = config.workers * 4

        with ThreadPoolExecutor(max_workers=config.workers) as executor:
            for first in range(0, config.samples, batch):
                if deadline is not None and time.monotonic() >= deadline:
                    partial = True
                    logger.warning(f"Time budget exhausted after {len(outcomes)} samples")
                    break
                future_to_index = {executor.submit(self.run_sample, i): i
                                   for i in range(first, min(first + batch, config.samples))}
                for future in as_completed(future_to_index):
                    outcomes.append(future.result())
                logger.debug(f"{len(outcomes)}/{config.samples} samples evaluated")

        report = VerificationReport(mode="statistical")
        report.results = self._statistical_results(outcomes)
        report.metadata.update({
            'samples': len(outcomes),
            'completed_samples': sum(1 for o in outcomes if o.completed),
            'states_explored': sum(o.steps + 1 for o in outcomes),
            'lost_messages': sum(o.lost_messages for o in outcomes),
            'partial': partial,
        })
        return report

    def _statistical_results(self, outcomes: List[SampleOutcome]) -> Dict[str, PropertyResult]:
        config = self.config
        required = required_sample_size(config.confidence, config.error_bound)
        always_names = {p.name for p in ALWAYS_PROPERTIES}
        completed = sum(1 for o in outcomes if o.completed)

        results = {}
        for prop in ALL_PROPERTIES:
            trials = len(outcomes) if prop.name in always_names else completed
            failing = sorted((o for o in outcomes if prop.name in o.violations),
                             key=lambda o: (len(o.violations[prop.name][1]), o.index))
            result = PropertyResult(
                prop.name, prop.kind.value, Verdict.STATISTICALLY_VERIFIED,
                states_checked=sum(o.steps + 1 for o in outcomes),
                samples=trials,
                violations=len(failing),
                confidence=config.confidence,
                interval=wilson_interval(len(failing), trials, config.confidence),
                required_samples=required,
            )
            if failing:
                first = failing[0]
                message, actions = first.violations[prop.name]
                result.verdict = Verdict.VIOLATED
                result.message = f"{message} (sample {first.index})"
                result.counterexample = Trace.from_actions(self.initial[first.root], actions)
            elif trials < required:
                result.verdict = Verdict.INDETERMINATE
                logger.warning(f"{prop.name}: {trials} samples evaluated, {required} required")
            results[prop.name] = result
        return results


def verify(config: VerificationConfig) -> VerificationReport:
    """Run a verification and return its report"""
    return VerificationEngine(config).run()
