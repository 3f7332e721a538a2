"""Shared helpers for ptyrelay."""
