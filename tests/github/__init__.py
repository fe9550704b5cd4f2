"""Tests for the GitHub API clients."""
