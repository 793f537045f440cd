"""
Error taxonomy for the Alpenglow verification engine.

Rejected transitions are not errors: the transition function returns a
``Rejection`` value for them (see ``transitions.py``). Everything here is
either a configuration problem, a surfaced property violation, an
inconclusive statistical run, or a fatal engine fault.
"""

from typing import Any, Dict, Optional


class AlpenglowVerificationError(Exception):
    """Base class for all verification errors"""


class ConfigurationError(AlpenglowVerificationError):
    """Inconsistent or invalid configuration, raised at initialization"""

    def __init__(self, message: str, field_name: Optional[str] = None):
        self.field_name = field_name
        if field_name:
            message = f"{field_name}: {message}"
        super().__init__(message)


class PropertyViolation(AlpenglowVerificationError):
    """A property predicate failed on a reachable state or trace"""

    def __init__(self, property_name: str, message: str, trace: Any = None):
        self.property_name = property_name
        self.trace = trace
        super().__init__(f"{property_name} violated: {message}")


class InsufficientSample(AlpenglowVerificationError):
    """Statistical mode did not reach the required sample size within budget"""

    def __init__(self, property_name: str, required: int, obtained: int):
        self.property_name = property_name
        self.required = required
        self.obtained = obtained
        super().__init__(
            f"{property_name}: {obtained} samples evaluated, {required} required"
        )


class ExplorationError(AlpenglowVerificationError):
    """Fatal exploration-engine fault; aborts the run"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        super().__init__(f"{message} ({details})" if details else message)
