"""
Warden - security and monitoring core for a server administration panel.

Submodules are imported on demand: ``warden self-check`` must be able to run
(and report) when psutil or tabulate is missing.
"""

__version__ = "1.0.0"
