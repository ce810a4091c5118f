"""Core module - shared models, persistence and observability.

This module contains the persisted assignment models, the history backends
and the logging utilities used by the COA engine and the API.

Remote persistence (the assignment HTTP API) belongs in /connectors/.
"""

__version__ = "1.0.0"
