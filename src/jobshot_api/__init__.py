"""Jobshot: run predefined one-shot Kubernetes Jobs from a web UI."""

__version__ = "0.1.0"
