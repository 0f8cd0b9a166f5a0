"""Synchronous license-gated routing of single prompts."""
