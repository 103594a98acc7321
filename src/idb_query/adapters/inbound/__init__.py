"""Inbound adapters for the query layer.

Inbound adapters handle incoming requests and convert them to
query executions.

Exports:
    REST API:
        - create_app: Create a FastAPI application
        - run_server: Run the REST API server
"""

from idb_query.adapters.inbound.rest_api import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
]
