#!/usr/bin/env python3
"""
WSGI entry point.

The mode comes from APP_MODE; test resources are only tracked in 'test'.
"""

import os
from resource_gc import create_app
from config.settings import config_by_name

app = create_app(config_by_name())

# Gunicorn expects `application` by default
application = app

if __name__ == "__main__":
    # For local development
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
