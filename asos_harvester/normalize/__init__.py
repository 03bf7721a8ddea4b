"""Canonical product normalization."""
