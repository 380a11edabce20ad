"""Workflow engine: validation, matching, transitions, merge, conversion and the revision ledger."""
