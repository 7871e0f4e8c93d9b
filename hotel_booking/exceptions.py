import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for errors raised by the booking core.

    Every subclass carries a stable ``code``, a public ``message`` that is safe
    to show to API clients and the HTTP status the API layer should answer with.
    """
    code = 'BookingError'
    message = 'Booking request failed'
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class UnknownRoomType(BookingError):
    code = 'UnknownRoomType'
    message = 'Unknown room type'


class RoomUnavailable(BookingError):
    code = 'RoomUnavailable'
    message = 'Room not available'


class NoRoomsAvailable(BookingError):
    code = 'NoRoomsAvailable'
    message = 'No rooms available'
    status_code = status.HTTP_409_CONFLICT


class BookingNotFound(BookingError):
    code = 'BookingNotFound'
    message = 'Booking not found'
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateBookingId(BookingError):
    code = 'DuplicateBookingId'
    message = 'Booking id already exists'
    status_code = status.HTTP_409_CONFLICT


class PaymentVerificationFailed(BookingError):
    # Expected business outcome; returned to the caller with HTTP 200.
    code = 'PaymentVerificationFailed'
    message = 'Payment verification failed'
    status_code = status.HTTP_200_OK


class GatewayUnavailable(BookingError):
    code = 'GatewayUnavailable'
    message = 'Error creating order'
    status_code = status.HTTP_502_BAD_GATEWAY


class StoreUnavailable(BookingError):
    code = 'StoreUnavailable'
    message = 'Server error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def api_exception_handler(exc, context):
    """Render ``BookingError`` as ``{success, message, code}``; defer the rest to DRF.

    Database errors that escape a view are reported as ``StoreUnavailable``.
    """
    view = context.get('view')
    view_name = view.__class__.__name__ if view else 'view'

    if isinstance(exc, DatabaseError):
        logger.exception('Database error in %s', view_name)
        exc = StoreUnavailable()

    if isinstance(exc, BookingError):
        level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        logger.log(level, '%s raised %s: %s', view_name, exc.code, exc.message)
        return Response(
            {'success': False, 'message': exc.message, 'code': exc.code},
            status=exc.status_code,
        )

    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict):
        response.data.setdefault('success', False)
    return response
