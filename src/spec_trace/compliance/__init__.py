"""Constitution rules and the compliance checker that evaluates them."""

from spec_trace.compliance.checker import (
    CODE_EVALUATION_ERROR,
    CODE_UNKNOWN_RULE,
    CODE_VIOLATION,
    Violation,
    check,
)
from spec_trace.compliance.constitution import (
    ConstitutionRule,
    Predicate,
    RuleSet,
    RuleSeverity,
    compile_predicate,
    load_rule_set,
    parse_rules,
)

__all__ = [
    "CODE_EVALUATION_ERROR",
    "CODE_UNKNOWN_RULE",
    "CODE_VIOLATION",
    "ConstitutionRule",
    "Predicate",
    "RuleSet",
    "RuleSeverity",
    "Violation",
    "check",
    "compile_predicate",
    "load_rule_set",
    "parse_rules",
]
