"""
Container image archive service.

Pulls container images through the Docker Engine and streams them back as one
tar archive. Pulls run concurrently; if any image fails to pull, the whole
request fails and no archive is sent.

Architecture:
    1. Client requests an archive (GET /tar?image=... or POST /tar with images.txt)
    2. Service normalizes the image list (trims, drops blanks and comments)
    3. Service resolves registry credentials from the uploaded config.json, if any
    4. Service pulls all images concurrently through the Docker Engine
    5. Service asks the Docker Engine to save all images into one archive
    6. Service streams the archive to the client as images.tar

Endpoints:
    - GET  /tar?image=<ref>&image=<ref> - Archive of public images
    - POST /tar - Archive of images listed in images.txt (multipart upload)
    - GET  /healthz - Liveness probe

Environment Variables:
    LOG_LEVEL, FLASK_HOST, FLASK_PORT, BASE_URL, DOCKER_HOST, DOCKER_API_TIMEOUT,
    MAX_UPLOAD_SIZE, REQUEST_TIMEOUT, STREAM_CHUNK_SIZE

Example:
    $ LOG_LEVEL=DEBUG python app.py
    $ curl -o images.tar "http://localhost:8080/tar?image=busybox&image=alpine"
    $ curl -o images.tar -F images.txt=@images.txt -F config.json=@$HOME/.docker/config.json \\
        http://localhost:8080/tar
    $ docker load -i images.tar
"""

import logging

from saveomat.config import config
from saveomat.routes import app

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    """Main entry point for the image archive service."""
    debug_mode = logger.getEffectiveLevel() == logging.DEBUG
    logger.info(f"Starting image archive service on {config.FLASK_HOST}:{config.FLASK_PORT}")
    logger.info(f"Configuration: {config}")
    logger.info(f"Log level: {logging.getLevelName(logger.getEffectiveLevel())}")
    if debug_mode:
        logger.info("Flask debug mode enabled")
    app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=debug_mode, threaded=True)


if __name__ == "__main__":
    main()
