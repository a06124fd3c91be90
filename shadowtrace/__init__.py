"""ShadowTrace - find the public FFLogs report behind an anonymized one."""

from shadowtrace.__version__ import __version__

__all__ = ["__version__"]
