"""Prompt assembly, context budgeting and response cleanup for chat inference."""
