"""Kubernetes controller that reports deployment records to the artifact metadata API."""

__version__ = "0.1.0"
