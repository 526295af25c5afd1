"""WSGI entry point for Gunicorn: ``gunicorn wsgi:app``."""
import os

from qrorder import create_app

# Dotted path of the config class, e.g. config.TestingConfig for smoke runs
app = create_app(os.getenv('QRORDER_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run()
