"""Main entry point for the Flask application"""
from cfo_forecast.config import settings
from cfo_forecast.core.app_factory import create_app

# Create the application
app, socketio = create_app()

if __name__ == '__main__':
    socketio.run(app, host='0.0.0.0', port=settings.PORT, debug=settings.DEBUG, allow_unsafe_werkzeug=True)
