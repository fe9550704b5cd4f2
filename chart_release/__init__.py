"""
chart-release automates releasing charts from a multi-chart Helm repository.

Charts live below one root directory per kind (`application/`, `library/`).
For every chart touched by a change the library packages it with helm,
publishes a GitHub release with generated notes, rebuilds the chart's
repository index from release history, optionally mirrors the package to an
OCI registry and commits generated files back through signed commits.
"""

__all__ = [
    "commit",
    "config",
    "detector",
    "exceptions",
    "git_repo",
    "helm",
    "index",
    "manifest",
    "oci",
    "pipeline",
    "publisher",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
