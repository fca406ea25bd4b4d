"""
Flask application and image archive endpoints.

Endpoints:
    GET  /tar?image=<ref>&image=<ref>  - Archive of public images
    POST /tar                          - Archive of the images listed in an
                                         uploaded images.txt, optionally pulled
                                         with the credentials of an uploaded
                                         Docker config.json
    GET  /healthz                      - Liveness probe

All endpoints are served below BASE_URL when it is configured.
"""

import logging
import threading

from flask import Blueprint, Flask, abort, current_app, jsonify, request

from .auth import EMPTY_AUTHENTICATOR, from_reader
from .config import config
from .errors import SaveomatError, http_status_for
from .fetch import fetch_and_package
from .images import normalize_images, read_image_lines
from .runtime import DockerImageClient
from .stream import archive_response

logger = logging.getLogger(__name__)

IMAGES_FIELD = "images.txt"
CREDENTIALS_FIELD = "config.json"

# Create Flask app
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_SIZE

bp = Blueprint("tar", __name__)


def get_image_client():
    """
    Return the runtime image client shared by all requests.

    Created from configuration on first use unless one was set in
    app.config["IMAGE_CLIENT"].
    """
    client = current_app.config.get("IMAGE_CLIENT")
    if client is None:
        client = DockerImageClient.from_env()
        current_app.config["IMAGE_CLIENT"] = client
    return client


def authenticator_from_upload(field: str):
    """
    Load the authenticator for a request from an optional uploaded config.json.

    Returns:
        StoreAuthenticator for the uploaded document, or EMPTY_AUTHENTICATOR if
        no document was uploaded

    Raises:
        CredentialDocumentError: if the uploaded document cannot be parsed
    """
    upload = request.files.get(field)
    if upload is None:
        logger.info("No authentication info provided")
        return EMPTY_AUTHENTICATOR
    return from_reader(upload.stream)


def stream_images(authenticator, images: list[str]):
    """
    Pull images and stream their archive as the response.

    Raises:
        HTTPException: 400 if no images were requested
        SaveomatError: if any pull or the save fails
    """
    if not images:
        logger.warning("Request without images")
        abort(400, "No images requested")

    logger.info(f"Archive requested for {len(images)} images: {images}")

    cancel = threading.Event()
    timer = None
    if config.REQUEST_TIMEOUT > 0:
        timer = threading.Timer(config.REQUEST_TIMEOUT, cancel.set)
        timer.daemon = True
        timer.start()
    try:
        archive = fetch_and_package(get_image_client(), authenticator, images, cancel)
    finally:
        if timer is not None:
            timer.cancel()

    return archive_response(archive)


# -------------------------------
# Archive Endpoints
# -------------------------------


@bp.route("/tar", methods=["GET"])
def get_tar():
    """
    Stream an archive of public images given as query parameters.

    Query Parameters:
        image: Image reference, repeatable (e.g. ?image=busybox&image=alpine:3)

    Returns:
        application/x-tar stream with Content-Disposition images.tar

    Raises:
        400: No image parameter, or an invalid image reference
        401/403/404/502/503/408: Registry failure while pulling
        500: Archive could not be produced
    """
    images = request.args.getlist("image")
    if not images:
        logger.warning("GET /tar without image parameter")
        abort(400, "Missing image query parameter")

    return stream_images(EMPTY_AUTHENTICATOR, normalize_images(images))


@bp.route("/tar", methods=["POST"])
def post_tar():
    """
    Stream an archive of the images listed in an uploaded file.

    Form Fields (multipart/form-data):
        images.txt: Required. One image reference per line; blank lines and
            lines starting with "#" are ignored
        config.json: Optional. Docker client config with registry credentials

    Returns:
        application/x-tar stream with Content-Disposition images.tar

    Raises:
        400: Missing images.txt, empty image list, invalid image reference, or
            invalid config.json
        401/403/404/502/503/408: Registry failure while pulling
        413: Upload larger than MAX_UPLOAD_SIZE
        500: Archive could not be produced
    """
    upload = request.files.get(IMAGES_FIELD)
    if upload is None:
        logger.warning(f"POST /tar without {IMAGES_FIELD}")
        abort(400, f"Missing {IMAGES_FIELD} upload")

    authenticator = authenticator_from_upload(CREDENTIALS_FIELD)
    images = normalize_images(read_image_lines(upload.stream))
    return stream_images(authenticator, images)


@bp.route("/healthz")
def healthz():
    """Liveness probe."""
    return "ok"


@app.errorhandler(SaveomatError)
def handle_saveomat_error(error: SaveomatError):
    """
    Convert a fetch error into a JSON error response.

    Response Format:
        {"error": "<message>", "stage": "<parse|credentials|lookup|encode|pull|save|cancel|chart>"}
    """
    status = http_status_for(error)
    if status >= 500:
        logger.error(f"Request failed at stage '{error.stage}': {error}")
    else:
        logger.warning(f"Request rejected at stage '{error.stage}': {error}")
    return jsonify(error=str(error), stage=error.stage), status


app.register_blueprint(bp, url_prefix=config.BASE_URL or None)
