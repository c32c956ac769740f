"""Persistence schema for the presence service."""
