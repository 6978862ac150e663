"""Decision strategies."""
from .rule_table import Action, Decision, DecisionContext, RuleTableStrategy

__all__ = ["Action", "Decision", "DecisionContext", "RuleTableStrategy"]
