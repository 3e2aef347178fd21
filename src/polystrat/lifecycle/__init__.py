"""Opportunity lifecycle state machine."""
