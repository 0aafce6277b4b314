"""Adaptive audio capture and upload pipeline for home-care reports."""

__version__ = "0.1.0"
