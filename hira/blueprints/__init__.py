"""
HIRA Lifecycle Engine
Blueprint registry.
"""

from flask import request
from werkzeug.exceptions import HTTPException

from hira.utils.errors import error_from_http


def register_blueprints(app):
    from hira.blueprints.health_bp import health_bp
    from hira.blueprints.hira_bp import hira_bp

    app.register_blueprint(hira_bp)
    app.register_blueprint(health_bp)

    # Routing errors (unknown URL, wrong method) never reach blueprint handlers
    @app.errorhandler(HTTPException)
    def _api_http_error(error):
        if request.path.startswith("/api/"):
            return error_from_http(error)
        return error
