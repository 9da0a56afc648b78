"""Tests for aiosimulcast."""
