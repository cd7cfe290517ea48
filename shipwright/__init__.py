"""Shipwright: versioned, platform-specific binary builds."""

from shipwright.__version__ import __version__
