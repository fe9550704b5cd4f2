"""Tests for chart-release."""
