"""
GradeGate - quality assurance around an untrusted grading model.

This package decides whether an extracted submission is fit to grade,
which representation to send to the model, whether the model's answer
satisfies a strict schema, and how far the resulting grade can be trusted.
"""

__version__ = "1.0.0"
__author__ = "GradeGate Team"


class GradeGateError(Exception):
    """Base class for errors raised by GradeGate conveniences."""
