"""Reusable actions run around the stack walk."""

from actions.eks import UpdateKubeconfigAction, EnsureAddonAction, DeleteAddonAction
from actions.orphans import ReportOrphansAction

__all__ = [
    'UpdateKubeconfigAction',
    'EnsureAddonAction',
    'DeleteAddonAction',
    'ReportOrphansAction',
]
