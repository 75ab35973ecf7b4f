"""
Workflow orchestration core for the ambient visual video studio.

Embedding applications call ambient_studio.logging_config.configure_logging()
once at startup; a WorkflowController that creates its own client does so
itself when structlog has not been configured yet.
"""

__version__ = "0.1.0"
