"""Prioritization pipeline services.

Import directly from the submodules, e.g.
``from triage_engine.services.engine import PrioritizationEngine``.
"""
