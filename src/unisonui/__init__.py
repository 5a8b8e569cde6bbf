"""unisonui: a front-end for the Unison file synchronizer."""

__version__ = "0.1.0"
