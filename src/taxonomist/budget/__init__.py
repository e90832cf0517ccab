"""Token estimation, request budgets and message fitting."""

from taxonomist.budget.fitter import FitResult, fit_messages
from taxonomist.budget.planner import BudgetPlan, BudgetPlanner, CategoryBudget, category_budget
from taxonomist.budget.tokens import estimate_tokens, head_tail_slice

__all__ = [
    "BudgetPlan",
    "BudgetPlanner",
    "CategoryBudget",
    "FitResult",
    "category_budget",
    "estimate_tokens",
    "fit_messages",
    "head_tail_slice",
]
