# wsgi.py
import logging
import os

from app import create_app
from config import DevelopmentConfig, ProductionConfig
from realtime import socketio  # shared SocketIO instance

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app(ProductionConfig if os.getenv("APP_ENV") == "production" else DevelopmentConfig)

# Local dev only: `python wsgi.py`
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    socketio.run(app, host="0.0.0.0", port=port)
