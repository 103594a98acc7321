"""Ports layer - interfaces between the application core and the outside.

- Inbound ports: what the query layer offers (QueryService, query errors)
- Outbound ports: what the query layer needs (StorageEngine)
"""
