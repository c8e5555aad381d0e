"""Operator engine for CloudFormation stack orchestration.

Walks a topology's dependency graph to apply (create-or-update) or
destroy stacks in order, blocking on each stack operation, purging
owned buckets before teardown, and gating destroy behind typed
confirmation.
"""
