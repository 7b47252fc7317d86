"""Snapshot storage adapters.

The ledger persists its full state through an abstract snapshot store, so the
JSON file backend can later be replaced by a single-writer database without
touching the ledger itself.
"""
