"""Errors, commands, filesystem, node and image-loading helpers for local container-node Kubernetes clusters."""

__version__ = "0.13.0"