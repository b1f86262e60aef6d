"""Issue prioritization and triage engine.

Turns static-analysis findings into ranked prioritization records with
triage suggestions, adapted to the team's workflow.

    from triage_engine import PrioritizationEngine, ProjectContext

    engine = PrioritizationEngine()
    ranked = engine.prioritize_issues(issues, ProjectContext())
"""

from triage_engine.core.cancellation import CancellationToken, PrioritizationCancelledError
from triage_engine.core.config import Settings, configure_logging, get_settings
from triage_engine.schemas import (
    Issue,
    IssueContext,
    IssuePrioritization,
    PrioritizationConfiguration,
    PrioritizationRule,
    ProjectContext,
    TriageAction,
    TriageSuggestion,
)
from triage_engine.services.engine import (
    PrioritizationEngine,
    create_accuracy_optimized_engine,
    create_engine,
    create_enterprise_engine,
    create_performance_optimized_engine,
    create_small_project_engine,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "PrioritizationEngine",
    "create_engine",
    "create_performance_optimized_engine",
    "create_accuracy_optimized_engine",
    "create_small_project_engine",
    "create_enterprise_engine",
    # Core
    "CancellationToken",
    "PrioritizationCancelledError",
    "Settings",
    "configure_logging",
    "get_settings",
    # Schemas
    "Issue",
    "IssueContext",
    "IssuePrioritization",
    "PrioritizationConfiguration",
    "PrioritizationRule",
    "ProjectContext",
    "TriageAction",
    "TriageSuggestion",
]
