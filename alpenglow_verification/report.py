"""
Verification Report

One result per property (verdict, confidence metadata, counterexample)
plus run metadata. Serializes to JSON for presentation layers and
tabulates to a pandas DataFrame for analysis.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .errors import InsufficientSample, PropertyViolation
from .trace import Trace

logger = logging.getLogger(__name__)


class Verdict(Enum):
    VERIFIED = "verified"
    VIOLATED = "violated"
    VERIFIED_UP_TO_DEPTH = "verified_up_to_depth"
    STATISTICALLY_VERIFIED = "statistically_verified"
    INDETERMINATE = "indeterminate"


@dataclass
class PropertyResult:
    name: str
    kind: str
    verdict: Verdict
    message: Optional[str] = None
    counterexample: Optional[Trace] = None
    states_checked: int = 0
    depth: Optional[int] = None
    samples: Optional[int] = None
    violations: int = 0
    confidence: Optional[float] = None
    interval: Optional[Tuple[float, float]] = None
    required_samples: Optional[int] = None

    @property
    def violated(self) -> bool:
        return self.verdict is Verdict.VIOLATED

    def summary(self) -> str:
        if self.verdict is Verdict.VIOLATED:
            steps = len(self.counterexample) if self.counterexample is not None else 0
            return f"{self.name}: VIOLATED ({self.message}; trace of {steps} steps)"
        if self.verdict is Verdict.VERIFIED_UP_TO_DEPTH:
            return f"{self.name}: verified up to depth {self.depth}"
        if self.verdict is Verdict.STATISTICALLY_VERIFIED:
            return (f"{self.name}: statistically verified at {self.confidence:.0%} confidence "
                    f"over {self.samples} samples")
        if self.verdict is Verdict.INDETERMINATE:
            if self.samples is None:
                return f"{self.name}: indeterminate ({self.message})"
            return f"{self.name}: indeterminate ({self.samples} of {self.required_samples} samples)"
        return f"{self.name}: verified ({self.states_checked} states)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': self.kind,
            'verdict': self.verdict.value,
            'message': self.message,
            'states_checked': self.states_checked,
            'depth': self.depth,
            'samples': self.samples,
            'violations': self.violations,
            'confidence': self.confidence,
            'interval': list(self.interval) if self.interval is not None else None,
            'required_samples': self.required_samples,
            'counterexample': self.counterexample.to_dict() if self.counterexample is not None else None,
        }


@dataclass
class VerificationReport:
    mode: str
    results: Dict[str, PropertyResult] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> PropertyResult:
        return self.results[name]

    @property
    def violations(self) -> List[PropertyResult]:
        return [r for r in self.results.values() if r.violated]

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    @property
    def indeterminate(self) -> List[PropertyResult]:
        return [r for r in self.results.values() if r.verdict is Verdict.INDETERMINATE]

    def raise_for_violations(self):
        """Raise PropertyViolation for the first violated property, if any"""
        for result in self.violations:
            raise PropertyViolation(result.name, result.message or "", result.counterexample)

    def raise_for_indeterminate(self):
        for result in self.indeterminate:
            raise InsufficientSample(result.name, result.required_samples or 0, result.samples or 0)

    def summary(self) -> List[str]:
        return [result.summary() for result in self.results.values()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mode': self.mode,
            'metadata': self.metadata,
            'results': {name: r.to_dict() for name, r in self.results.items()},
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per property"""
        rows = []
        for result in self.results.values():
            rows.append({
                'property': result.name,
                'kind': result.kind,
                'verdict': result.verdict.value,
                'states_checked': result.states_checked,
                'depth': result.depth,
                'samples': result.samples,
                'violations': result.violations,
                'interval_low': result.interval[0] if result.interval else None,
                'interval_high': result.interval[1] if result.interval else None,
                'trace_length': len(result.counterexample) if result.counterexample is not None else None,
            })
        return pd.DataFrame(rows)
