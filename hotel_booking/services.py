"""
Booking orchestration: the only place where a booking, the room inventory and
the guest directory are changed together.

Each operation runs in one database transaction and locks the booking row, so
concurrent callbacks for the same booking are applied one after another. The
payment gateway is called outside of any transaction.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .exceptions import (
    BookingNotFound,
    DuplicateBookingId,
    NoRoomsAvailable,
    PaymentVerificationFailed,
    RoomUnavailable,
    StoreUnavailable,
)
from .gateway import get_gateway
from .models import Booking, Guest, RoomInventory, normalize_email

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    order: dict
    booking: Booking

    @property
    def booking_id(self):
        return self.booking.booking_id


@dataclass
class VerificationResult:
    success: bool
    booking: Optional[Booking] = None
    code: Optional[str] = None
    message: str = ''
    warnings: list = field(default_factory=list)


def generate_booking_id():
    return f"MG{uuid.uuid4().hex[:12].upper()}"


def to_minor_units(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class BookingOrchestrator:

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    # -- create-order -----------------------------------------------------

    def create_order(self, amount, booking_data):
        """Create a gateway order and a pending booking for it.

        ``booking_data`` holds Booking model fields (snake_case). Without
        ``BOOKING_HOLD_ON_ORDER`` the room is only checked here and taken when
        the payment is verified; with it, one unit is reserved immediately.
        """
        booking_data = dict(booking_data)
        booking_id = booking_data.pop('booking_id', None) or generate_booking_id()
        room_type = booking_data['room_type']
        hold = settings.BOOKING_HOLD_ON_ORDER

        with _store_errors('create_order'):
            if Booking.objects.filter(booking_id=booking_id).exists():
                raise DuplicateBookingId()
            if hold:
                try:
                    RoomInventory.objects.decrement(room_type)
                except NoRoomsAvailable:
                    raise RoomUnavailable()
            elif RoomInventory.objects.available(room_type) <= 0:
                raise RoomUnavailable()

        try:
            order = self.gateway.create_order(
                to_minor_units(amount),
                settings.PAYMENT_CURRENCY,
                f"{settings.BOOKING_RECEIPT_PREFIX}{int(time.time() * 1000)}",
                {'bookingId': booking_id, 'guestEmail': normalize_email(booking_data.get('guest_email'))},
            )
        except Exception:
            if hold:
                self._release(room_type, reason=f'order failed for {booking_id}')
            raise

        booking_data.update(
            booking_id=booking_id,
            gateway_order_id=order['id'],
            status=Booking.Status.PENDING,
            payment_status=Booking.PaymentStatus.PENDING,
            inventory_held=hold,
        )
        try:
            with _store_errors('create_order'), transaction.atomic():
                try:
                    with transaction.atomic():
                        booking = Booking.objects.create(**booking_data)
                except IntegrityError:
                    raise DuplicateBookingId()
                Guest.objects.record_booking(booking, confirmed=False)
        except Exception:
            if hold:
                self._release(room_type, reason=f'booking insert failed for {booking_id}')
            raise

        logger.info('Booking %s pending on gateway order %s (%s)', booking_id, order['id'], room_type)
        return OrderResult(order=order, booking=booking)

    # -- verify-payment ---------------------------------------------------

    def verify_payment(self, gateway_order_id, gateway_payment_id, gateway_signature, booking_id):
        signature_ok = self.gateway.verify_signature(gateway_order_id, gateway_payment_id, gateway_signature)

        with _store_errors('verify_payment'), transaction.atomic():
            booking = _lock_booking(booking_id)
            if signature_ok and booking is None:
                raise BookingNotFound()

            if signature_ok and booking.gateway_order_id == gateway_order_id:
                return self._confirm_payment(booking, gateway_payment_id, gateway_signature)

            if booking is not None and booking.payment_status == Booking.PaymentStatus.PENDING:
                booking.status = Booking.Status.CANCELLED
                booking.payment_status = Booking.PaymentStatus.FAILED
                self._release_held(booking)
                booking.save()

        logger.warning('Payment verification failed for booking %s (order %s)', booking_id, gateway_order_id)
        failure = PaymentVerificationFailed()
        return VerificationResult(success=False, booking=booking, code=failure.code, message=failure.message)

    def _confirm_payment(self, booking, payment_id, signature):
        if booking.payment_status == Booking.PaymentStatus.COMPLETED:
            # Replayed callback; the booking was already confirmed once.
            logger.info('Booking %s already paid, ignoring repeated callback', booking.booking_id)
            return VerificationResult(success=True, booking=booking)

        result = VerificationResult(success=True, booking=booking)
        if not booking.inventory_held:
            shortfall = self._take_room(booking)
            if shortfall:
                result.code = shortfall.code
                result.warnings.append(shortfall.message)

        booking.status = Booking.Status.CONFIRMED
        booking.payment_status = Booking.PaymentStatus.COMPLETED
        booking.gateway_payment_id = payment_id
        booking.gateway_signature = signature
        booking.save()
        Guest.objects.record_booking(booking, confirmed=True)

        logger.info('Payment %s verified, booking %s confirmed', payment_id, booking.booking_id)
        return result

    # -- cancel -----------------------------------------------------------

    def cancel_booking(self, booking_id):
        with _store_errors('cancel_booking'), transaction.atomic():
            booking = _lock_booking(booking_id)
            if booking is None:
                raise BookingNotFound()
            if booking.status == Booking.Status.CANCELLED:
                return booking

            self._release_held(booking)
            booking.status = Booking.Status.CANCELLED
            booking.cancelled_date = timezone.now()
            booking.save()

        logger.info('Booking %s cancelled', booking_id)
        return booking

    def release_stale_holds(self, ttl_minutes=None):
        """Cancel pending bookings whose reservation outlived the hold TTL."""
        ttl = ttl_minutes if ttl_minutes is not None else settings.BOOKING_HOLD_TTL_MINUTES
        cutoff = timezone.now() - timedelta(minutes=ttl)
        with _store_errors('release_stale_holds'):
            stale_ids = list(Booking.objects.stale_holds(cutoff).values_list('booking_id', flat=True))

        released = []
        for booking_id in stale_ids:
            with _store_errors('release_stale_holds'), transaction.atomic():
                booking = _lock_booking(booking_id)
                # Paid or cancelled while we were iterating.
                if booking is None or booking.status != Booking.Status.PENDING or not booking.inventory_held:
                    continue
                self._release_held(booking)
                booking.status = Booking.Status.CANCELLED
                booking.cancelled_date = timezone.now()
                booking.save()
            released.append(booking_id)
            logger.info('Released stale hold for booking %s', booking_id)
        return released

    # -- direct create ----------------------------------------------------

    def direct_create(self, booking_data):
        booking_data = dict(booking_data)
        booking_data['booking_id'] = booking_data.get('booking_id') or generate_booking_id()
        confirmed = booking_data.get('status') == Booking.Status.CONFIRMED

        with _store_errors('direct_create'), transaction.atomic():
            try:
                with transaction.atomic():
                    booking = Booking.objects.create(**booking_data)
            except IntegrityError:
                raise DuplicateBookingId()

            if confirmed:
                self._take_room(booking)
                booking.save(update_fields=['inventory_held'])
            Guest.objects.record_booking(booking, confirmed=confirmed)

        logger.info('Booking %s created directly with status %s', booking.booking_id, booking.status)
        return booking

    # -- profile ----------------------------------------------------------

    def update_guest_profile(self, email, name, phone):
        with _store_errors('update_guest_profile'), transaction.atomic():
            updated = Booking.objects.for_email(email).update(guest_name=name, guest_phone=phone)
            Guest.objects.update_profile(email, name, phone)
        return updated

    # -- inventory helpers ------------------------------------------------

    def _take_room(self, booking):
        """Decrement inventory for ``booking``; return the error instead of raising it."""
        try:
            RoomInventory.objects.decrement(booking.room_type)
        except NoRoomsAvailable as exc:
            logger.warning('No %s rooms left while confirming booking %s', booking.room_type, booking.booking_id)
            booking.inventory_held = False
            return exc
        booking.inventory_held = True
        return None

    def _release_held(self, booking):
        if booking.inventory_held:
            RoomInventory.objects.increment(booking.room_type)
            booking.inventory_held = False

    def _release(self, room_type, reason):
        try:
            with transaction.atomic():
                RoomInventory.objects.increment(room_type)
        except DatabaseError:
            logger.exception('Could not release %s room (%s)', room_type, reason)


def _lock_booking(booking_id):
    return Booking.objects.select_for_update().filter(booking_id=booking_id).first()


@contextmanager
def _store_errors(operation):
    """Turn database failures into ``StoreUnavailable`` and log them."""
    try:
        yield
    except DatabaseError as exc:
        logger.exception('Database error during %s', operation)
        raise StoreUnavailable() from exc
