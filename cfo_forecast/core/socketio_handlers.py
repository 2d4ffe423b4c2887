"""SocketIO event handlers"""
import logging
from flask import current_app
from flask_socketio import join_room, leave_room, emit

logger = logging.getLogger(__name__)


def register_socketio_handlers(socketio):
    """Register all SocketIO event handlers"""

    @socketio.on('connect')
    def handle_connect():
        logger.info("Client connected")

    @socketio.on('disconnect')
    def handle_disconnect(*args, **kwargs):
        logger.info("Client disconnected")
        return True

    @socketio.on('join_forecast_room')
    def handle_join_forecast_room(data):
        """
        Allow clients to join a model's room for live training updates
        """
        model_name = data.get('model_name') if isinstance(data, dict) else None
        if not model_name:
            emit('forecast_room_error', {
                'status': 'error',
                'message': 'model_name is required'
            })
            return

        room = f"forecast_{model_name}"
        join_room(room)
        logger.info(f"Client joined forecast room: {room}")

        service = current_app.extensions.get('forecast_service')
        emit('forecast_room_joined', {
            'status': 'success',
            'model_name': model_name,
            'room': room,
            'training': bool(service and service.is_training(model_name)),
            'message': 'Successfully joined forecast room'
        })

    @socketio.on('leave_forecast_room')
    def handle_leave_forecast_room(data):
        """
        Allow clients to leave a model's room
        """
        model_name = data.get('model_name') if isinstance(data, dict) else None
        if model_name:
            room = f"forecast_{model_name}"
            leave_room(room)
            logger.info(f"Client left forecast room: {room}")

            emit('forecast_room_left', {
                'status': 'success',
                'model_name': model_name,
                'message': 'Successfully left forecast room'
            })
        return True

    @socketio.on_error_default
    def default_error_handler(e):
        logger.error(f"SocketIO error: {str(e)}")
        return False
