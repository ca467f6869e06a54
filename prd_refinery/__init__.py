"""Iterative PRD refinement and executability convergence engine."""

__version__ = "0.1.0"
