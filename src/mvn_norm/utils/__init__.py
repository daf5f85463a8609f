"""Testing utilities for layers."""

from .gradient_check import GradientChecker, GradientCheckResult, GradientMismatch

__all__ = ['GradientChecker', 'GradientCheckResult', 'GradientMismatch']
