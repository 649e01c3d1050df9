"""Health endpoints for the API blueprint.

Mounts served by this module:

- GET /health
    - Purpose: liveness check for load balancers and orchestration.
    - Parameters: none
"""

from flask import jsonify

from media_delivery.api import api_bp
from media_delivery.extension import current_delivery


@api_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint.

    Reports the configured formats so a misloaded configuration is visible.
    No auth required.
    """
    delivery = current_delivery()
    return jsonify(
        {
            "status": "healthy",
            "message": "Media delivery is running",
            "formats": list(delivery.config.formats),
            "default_format": delivery.config.default_format,
        }
    )
