"""
HTTP blueprints.

- ``api_bp``: service endpoints (health)
- ``image_bp``: signed image variants, mounted at ``settings.route``
- ``video_bp``: signed original videos, mounted at ``settings.video_route``

Route modules register themselves on these blueprints when imported.
"""
from flask import Blueprint

api_bp = Blueprint("api", __name__)
image_bp = Blueprint("images", __name__)
video_bp = Blueprint("videos", __name__)
