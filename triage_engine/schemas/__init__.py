"""Pydantic schemas for engine inputs and outputs."""

from triage_engine.schemas.classification import (
    CATEGORY_ORDER,
    ClassificationFeatures,
    IssueCategory,
    IssueClassification,
    IssueResolutionOutcome,
    IssueSeverity,
    IssueTrainingData,
    ModelMetrics,
)
from triage_engine.schemas.common import (
    ValidationErrorDetail,
    ValidationResult,
    ValidationWarning,
)
from triage_engine.schemas.issue import (
    ComplexityMetrics,
    Criticality,
    Issue,
    IssueContext,
    IssueType,
)
from triage_engine.schemas.prioritization import (
    IssuePrioritization,
    PrioritizationConfiguration,
    PrioritizationMetadata,
    ScoringFactors,
    ScoringWeights,
    TriageAction,
    TriageSuggestion,
)
from triage_engine.schemas.project import (
    HistoricalData,
    PerformanceBreakdown,
    ProjectContext,
    SprintContext,
    TeamPreferences,
    TeamPriorities,
    Workflow,
)
from triage_engine.schemas.rule import (
    AdjustScoreAction,
    ConflictResolution,
    CustomAction,
    IssueResolutionData,
    PrioritizationRule,
    RuleAction,
    RuleCondition,
    RuleConflict,
    RuleMetadata,
    RuleOperator,
    SetPriorityAction,
    SkipTriageAction,
    TriageRuleRecommendation,
)
from triage_engine.schemas.triage import (
    TriageEffectivenessReport,
    TriageOutcome,
    WorkflowAnalysis,
    WorkflowMetrics,
)

__all__ = [
    # Issue
    "Issue",
    "IssueType",
    "IssueContext",
    "ComplexityMetrics",
    "Criticality",
    # Classification
    "CATEGORY_ORDER",
    "ClassificationFeatures",
    "IssueCategory",
    "IssueSeverity",
    "IssueClassification",
    "IssueTrainingData",
    "IssueResolutionOutcome",
    "ModelMetrics",
    # Project
    "ProjectContext",
    "TeamPreferences",
    "TeamPriorities",
    "SprintContext",
    "HistoricalData",
    "PerformanceBreakdown",
    "Workflow",
    # Prioritization
    "IssuePrioritization",
    "PrioritizationConfiguration",
    "PrioritizationMetadata",
    "ScoringFactors",
    "ScoringWeights",
    "TriageAction",
    "TriageSuggestion",
    # Rules
    "PrioritizationRule",
    "RuleCondition",
    "RuleOperator",
    "RuleAction",
    "AdjustScoreAction",
    "SetPriorityAction",
    "SkipTriageAction",
    "CustomAction",
    "RuleMetadata",
    "RuleConflict",
    "ConflictResolution",
    "IssueResolutionData",
    "TriageRuleRecommendation",
    # Triage
    "TriageOutcome",
    "TriageEffectivenessReport",
    "WorkflowAnalysis",
    "WorkflowMetrics",
    # Validation
    "ValidationResult",
    "ValidationErrorDetail",
    "ValidationWarning",
]
