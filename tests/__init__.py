"""Tests for the portal sampling service."""
