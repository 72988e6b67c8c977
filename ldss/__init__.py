"""
LDSS backend-as-a-service package.

Developers register projects; each project gets an isolated,
collection-partitioned data store and an optional binding to an external
storage provider. The FastAPI app in ``ldss.app`` exposes the services in
this package over HTTP.
"""
