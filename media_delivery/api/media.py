"""Media delivery endpoints.

- GET <settings.route>/<format>/<id>/<path:file>
    Signed image variant. Query ``sig``, ``ts``, ``sec``, ``client`` are only
    required for restricted formats. Rejected requests are answered with the
    configured fallback image and status 403/404/412.
- GET <settings.video_route>/<id>/<path:file>
    Signed original video. Rejections are plain JSON errors.
"""

import mimetypes

import structlog
from flask import abort, current_app, request, send_file

from media_delivery.api import image_bp, video_bp
from media_delivery.error_utils import safe_log_error
from media_delivery.exceptions import GenerationFailure
from media_delivery.extension import current_delivery

logger = structlog.get_logger(__name__)


def _mimetype(path: str, default: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or default


@image_bp.route("/<format>/<id>/<path:file>", methods=["GET"])
def image_src(format: str, id: str, file: str):
    delivery = current_delivery()
    dispatcher = delivery.dispatcher
    outcome = dispatcher.dispatch(format, id, file, request.args)

    def serve(path: str, status: int):
        response = send_file(
            path, mimetype=_mimetype(path, "image/jpeg"), conditional=status == 200
        )
        if status != 200:
            response.status_code = status
            response.headers["Cache-Control"] = "no-store"
        elif delivery.resolver.is_restricted(outcome.key.base):
            response.headers["Cache-Control"] = "private"
        return response

    try:
        return dispatcher.generate_and_serve(outcome, serve)
    except GenerationFailure as e:
        safe_log_error(
            current_app.logger,
            "Variant generation failed",
            exc_info=e,
            status=outcome.status,
            path_orig=outcome.path_orig,
            path_cache=e.path_cache,
        )
        abort(e.status_code)


@video_bp.route("/<id>/<path:file>", methods=["GET"])
def video_src(id: str, file: str):
    outcome = current_delivery().video.dispatch(id, file, request.args)
    if outcome.status != 200:
        abort(outcome.status)

    logger.debug("video_served", id=id, path=outcome.path)
    response = send_file(
        outcome.path, mimetype=_mimetype(outcome.path, "video/mp4"), conditional=True
    )
    response.headers["Cache-Control"] = "private"
    return response
