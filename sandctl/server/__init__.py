"""
sandctl HTTP API server.

Usage:
    # Start server
    python -m sandctl.server

    # Or with uvicorn directly
    uvicorn sandctl.server:create_app --factory

    # Or programmatically
    from sandctl.server import create_app

    app = create_app()
"""

from sandctl.server.app import create_app

__all__ = ["create_app"]
