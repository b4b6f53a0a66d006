from .metrics import render_metrics

__all__ = ["render_metrics"]
