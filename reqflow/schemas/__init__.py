"""Pydantic input and output models."""
