"""
Main entry point for domain-mask (development server).

Production runs under gunicorn: gunicorn -c gunicorn_config.py 'app:app'
"""
import os
import logging
from domain_mask import create_app

app = create_app()

if __name__ == '__main__':
    port = int(os.environ.get("PORT", 8787))

    # ENVIRONMENT=development enables debug mode and verbose logging
    debug = app.config['MASK_CONFIG'].is_development

    # For local development, use localhost; for production, use 0.0.0.0
    host = '127.0.0.1' if debug else '0.0.0.0'

    level = os.environ.get('LOG_LEVEL', 'DEBUG' if debug else 'INFO').upper()
    logging.basicConfig(level=level)
    logging.getLogger(__name__).info("Starting domain-mask on http://%s:%s", host, port)
    logging.getLogger(__name__).info("Alias: %s -> Target: %s",
                                     ", ".join(app.config['MASK_CONFIG'].alias_domains),
                                     app.config['MASK_CONFIG'].target_domain)
    logging.getLogger(__name__).info("Debug mode: %s", "ON" if debug else "OFF")

    app.run(host=host, port=port, debug=debug)
