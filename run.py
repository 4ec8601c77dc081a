#!/usr/bin/env python3
"""
LawnMates Backend - Main application entry point
"""
from lawnmates import create_app
import os

app = create_app()

if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('DEBUG', 'True').lower() == 'true'

    # threaded: every open /ws connection holds a worker thread
    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        threaded=True,
    )
