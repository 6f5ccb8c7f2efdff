"""Governance voting-deadline alerts for Cosmos SDK validators."""
