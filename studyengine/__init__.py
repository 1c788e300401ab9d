"""Adaptive content selection and generation-config resolution for study sessions."""

__version__ = "1.0.0"
