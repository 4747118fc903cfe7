"""
strategies - Multi-leg strategy templates and their Monte Carlo evaluation.

Available strategies:
- templates: catalogue of standard option structures built around spot,
  plus evaluate_templates() for EV / median / probability of profit
"""

from .templates import (
    Template,
    EvalResult,
    TEMPLATES,
    round_strike,
    build_template,
    terminal_prices,
    evaluate_template,
    evaluate_templates,
)

__all__ = [
    'Template',
    'EvalResult',
    'TEMPLATES',
    'round_strike',
    'build_template',
    'terminal_prices',
    'evaluate_template',
    'evaluate_templates',
]
