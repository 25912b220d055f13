"""Mockup generation job queue service."""
