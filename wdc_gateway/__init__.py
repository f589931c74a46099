"""
Web Data Connector Gateway

Lets a browser-hosted analytics connector pull paginated, authenticated data
from an upstream API it cannot call directly.

Packages:
- proxy: Credential-forwarding reverse proxy (GET /proxy)
- connector: Client-side lifecycle (setup, schema, get_data, post_process,
  teardown) and the session runner

Modules:
- main: FastAPI application factory
- config: Pydantic settings
- models: Pydantic data models
- errors: Error taxonomy
"""

__version__ = "1.0.0"
