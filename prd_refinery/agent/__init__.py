"""Refinement engine components."""
