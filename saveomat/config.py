"""
Configuration module for the image archive service.

Loads all configuration from environment variables with sensible defaults.
"""

import os


class Config:
    """
    Service configuration from environment variables.

    Loads all configuration values from environment variables with sensible defaults.
    All settings can be overridden by setting the corresponding environment variable.
    """

    def __init__(self):
        """
        Initialize configuration from environment variables.

        Environment Variables:
            LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO
            FLASK_HOST: Server bind address. Default: 0.0.0.0
            FLASK_PORT: Server bind port. Default: 8080
            BASE_URL: Path prefix the endpoints are served under. Default: "" (root)
            DOCKER_HOST: Docker Engine address. Default: unset (Docker SDK default)
            DOCKER_API_TIMEOUT: Timeout for non-streaming Docker calls in seconds. Default: 60
            MAX_UPLOAD_SIZE: Maximum request body size in bytes. Default: 524288 (512K)
            REQUEST_TIMEOUT: Deadline for pulling all images of a request in seconds. Default: 0 (none)
            STREAM_CHUNK_SIZE: Chunk size used when streaming archives. Default: 1048576
        """
        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Server
        self.FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
        self.FLASK_PORT = int(os.getenv("FLASK_PORT", "8080"))
        self.BASE_URL = os.getenv("BASE_URL", "").rstrip("/")

        # Docker Engine
        self.DOCKER_HOST = os.getenv("DOCKER_HOST") or None
        self.DOCKER_API_TIMEOUT = int(os.getenv("DOCKER_API_TIMEOUT", "60"))  # seconds

        # Request limits
        self.MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(512 * 1024)))
        self.REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "0"))  # seconds, 0 = none

        # Streaming
        self.STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", str(1024 * 1024)))

    def __repr__(self):
        """String representation for logging."""
        return (
            f"Config(LOG_LEVEL={self.LOG_LEVEL}, "
            f"FLASK_HOST={self.FLASK_HOST}, "
            f"FLASK_PORT={self.FLASK_PORT}, "
            f"BASE_URL={self.BASE_URL!r}, "
            f"DOCKER_HOST={self.DOCKER_HOST}, "
            f"MAX_UPLOAD_SIZE={self.MAX_UPLOAD_SIZE}, "
            f"REQUEST_TIMEOUT={self.REQUEST_TIMEOUT})"
        )


# Global config instance
config = Config()
