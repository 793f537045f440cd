"""
Alpenglow verification: a model of the two-path (fast/slow) stake-weighted
consensus protocol with erasure-coded block propagation and economic
incentives, plus an engine that checks its correctness properties
exhaustively, to a bounded depth, or statistically.
"""

from .config import VerificationConfig
from .engine import VerificationEngine, verify
from .errors import (AlpenglowVerificationError, ConfigurationError, ExplorationError,
                     InsufficientSample, PropertyViolation)
from .report import PropertyResult, Verdict, VerificationReport
from .state import ProtocolState, initial_states
from .trace import Trace
from .transitions import Rejection, apply

__version__ = "0.1.0"

__all__ = [
    "VerificationConfig",
    "VerificationEngine",
    "verify",
    "AlpenglowVerificationError",
    "ConfigurationError",
    "ExplorationError",
    "InsufficientSample",
    "PropertyViolation",
    "PropertyResult",
    "Verdict",
    "VerificationReport",
    "ProtocolState",
    "initial_states",
    "Trace",
    "Rejection",
    "apply",
]
