"""
domain-mask - reverse proxy that serves a hidden origin under an alias domain
"""
from flask import Flask
from flask_cors import CORS

from domain_mask.models.mask_config import MaskConfig


def create_app(config=None):
    """Create and configure the Flask application"""
    app = Flask(__name__)

    # Deployment settings are read once; services receive them explicitly
    mask_config = config or MaskConfig.from_env()
    app.config['MASK_CONFIG'] = mask_config

    # Ensure Flask sees the public scheme and host when running behind nginx
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(
        app.wsgi_app,
        x_for=1,
        x_proto=1,
        x_host=1,
        x_port=1,
    )

    # Only the alias origins may make credentialed cross-origin calls
    CORS(app, origins=list(mask_config.alias_domains), supports_credentials=True)

    from domain_mask.features.mask.blueprint import bp as mask_bp
    app.register_blueprint(mask_bp)

    return app
