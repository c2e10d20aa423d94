"""
devsupervisor - Local development supervisor for a backend/frontend pair.

Frees the service ports, finds the hot-reload tool, starts both services,
waits for their health checks, streams their logs and shuts them down
cleanly on Ctrl+C.
"""

__version__ = "0.1.0"
