import hashlib
import hmac
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import OperationalError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature
from django.utils import timezone
import razorpay
from rest_framework import status
from rest_framework.test import APITestCase

from .authentication import issue_admin_token
from .exceptions import (
    BookingNotFound,
    DuplicateBookingId,
    GatewayUnavailable,
    NoRoomsAvailable,
    RoomUnavailable,
    StoreUnavailable,
    UnknownRoomType,
)
from .gateway import RazorpayGateway
from .models import Booking, BookingQuerySet, Guest, RoomInventory, RoomInventoryManager
from .services import BookingOrchestrator, to_minor_units

SECRET = 'rzp_test_secret'


class FakeGateway(RazorpayGateway):
    """Razorpay adapter with the network call replaced; signatures are checked for real."""

    def __init__(self, fail=False):
        super().__init__('rzp_test_key', SECRET)
        self.fail = fail
        self.orders = []

    def create_order(self, amount_minor_units, currency, receipt, notes):
        if self.fail:
            raise GatewayUnavailable()
        order = {
            'id': f'order_{len(self.orders) + 1:04d}',
            'entity': 'order',
            'amount': amount_minor_units,
            'currency': currency,
            'receipt': receipt,
            'notes': notes,
            'status': 'created',
        }
        self.orders.append(order)
        return order


def sign(order_id, payment_id):
    return hmac.new(SECRET.encode(), f'{order_id}|{payment_id}'.encode(), hashlib.sha256).hexdigest()


def mutate(signature, position):
    replacement = '0' if signature[position] != '0' else '1'
    return signature[:position] + replacement + signature[position + 1:]


def booking_draft(**overrides):
    draft = {
        'guest_name': 'Asha Rao',
        'guest_email': 'asha@example.com',
        'guest_phone': '9876543210',
        'room_type': 'standard',
        'check_in': date.today() + timedelta(days=1),
        'check_out': date.today() + timedelta(days=3),
        'guests': 2,
        'nights': 2,
        'room_price': Decimal('2250.00'),
        'total_amount': Decimal('4500.00'),
    }
    draft.update(overrides)
    return draft


def set_inventory(standard=10, deluxe=8, suite=5):
    return RoomInventory.objects.set_counts(standard=standard, deluxe=deluxe, suite=suite)


def available(room_type):
    return RoomInventory.objects.available(room_type)


class InventoryStoreTestCase(TestCase):
    """Atomic increment / conditional decrement of the room inventory"""

    def setUp(self):
        set_inventory(standard=1, deluxe=0, suite=5)

    def test_decrement_never_goes_below_zero(self):
        self.assertEqual(RoomInventory.objects.decrement('standard'), 0)

        with self.assertRaises(NoRoomsAvailable):
            RoomInventory.objects.decrement('standard')

        self.assertEqual(available('standard'), 0)

    def test_failed_decrement_leaves_row_untouched(self):
        before = RoomInventory.objects.current()

        with self.assertRaises(NoRoomsAvailable):
            RoomInventory.objects.decrement('deluxe')

        after = RoomInventory.objects.current()
        self.assertEqual(after.as_dict(), before.as_dict())
        self.assertEqual(after.updated_at, before.updated_at)

    def test_increment_has_no_upper_bound(self):
        for _ in range(50):
            RoomInventory.objects.increment('suite')

        self.assertEqual(available('suite'), 55)

    def test_unknown_room_type_is_rejected(self):
        with self.assertRaises(UnknownRoomType):
            RoomInventory.objects.decrement('penthouse')
        with self.assertRaises(UnknownRoomType):
            RoomInventory.objects.increment('penthouse')

    def test_missing_row_falls_back_to_defaults(self):
        RoomInventory.objects.all().delete()

        self.assertEqual(RoomInventory.objects.current().as_dict(),
                         {'standard': 10, 'deluxe': 8, 'suite': 5})

    def test_two_readers_of_the_last_unit_cannot_both_take_it(self):
        """Both requests saw one room left; only one decrement may succeed"""
        first_read = available('standard')
        second_read = available('standard')
        self.assertEqual((first_read, second_read), (1, 1))

        RoomInventory.objects.decrement('standard')
        with self.assertRaises(NoRoomsAvailable):
            RoomInventory.objects.decrement('standard')

        self.assertEqual(available('standard'), 0)


class GuestDirectoryTestCase(TestCase):
    """Guest rows are keyed by lower-cased email and count each booking once"""

    def make_booking(self, booking_id, email='Meera@Example.com'):
        return Booking.objects.create(booking_id=booking_id, **booking_draft(guest_email=email))

    def test_emails_are_stored_normalized(self):
        booking = self.make_booking('BK1', email='  Meera@Example.COM ')
        guest = Guest.objects.record_booking(booking, confirmed=False)

        self.assertEqual(booking.guest_email, 'meera@example.com')
        self.assertEqual(guest.email, 'meera@example.com')
        self.assertEqual(Guest.objects.get_by_email('MEERA@example.com'), guest)

    def test_unconfirmed_booking_creates_guest_without_counting(self):
        guest = Guest.objects.record_booking(self.make_booking('BK1'), confirmed=False)

        self.assertEqual(guest.bookings, 0)
        self.assertIsNotNone(guest.last_booking)

    def test_confirmed_booking_is_counted_once(self):
        booking = self.make_booking('BK1')

        Guest.objects.record_booking(booking, confirmed=True)
        guest = Guest.objects.record_booking(booking, confirmed=True)

        self.assertEqual(guest.bookings, 1)
        booking.refresh_from_db()
        self.assertTrue(booking.guest_counted)

    def test_lookup_by_email_is_exact_not_substring(self):
        Guest.objects.record_booking(self.make_booking('BK1', email='ann@example.com'), confirmed=False)
        Guest.objects.record_booking(self.make_booking('BK2', email='joann@example.com'), confirmed=False)

        self.assertEqual(Booking.objects.for_email('ANN@example.com').count(), 1)
        self.assertEqual(Guest.objects.get_by_email('ann@example.com').email, 'ann@example.com')


class SignatureTestCase(SimpleTestCase):
    """HMAC-SHA256 over order_id|payment_id with the gateway secret"""

    def setUp(self):
        self.gateway = RazorpayGateway('rzp_test_key', SECRET)

    def test_computed_signature_verifies(self):
        signature = sign('order_abc', 'pay_xyz')

        self.assertEqual(len(signature), 64)
        self.assertTrue(self.gateway.verify_signature('order_abc', 'pay_xyz', signature))

    def test_any_single_character_mutation_fails(self):
        signature = sign('order_abc', 'pay_xyz')

        for position in range(len(signature)):
            with self.subTest(position=position):
                self.assertFalse(
                    self.gateway.verify_signature('order_abc', 'pay_xyz', mutate(signature, position))
                )

    def test_signature_is_bound_to_order_and_payment(self):
        signature = sign('order_abc', 'pay_xyz')

        self.assertFalse(self.gateway.verify_signature('order_abd', 'pay_xyz', signature))
        self.assertFalse(self.gateway.verify_signature('order_abc', 'pay_xyy', signature))

    def test_non_ascii_signature_is_rejected(self):
        signature = sign('order_abc', 'pay_xyz')

        for bad in ('é' + signature[1:], signature[:-1] + '€', 'ü' * 64):
            with self.subTest(signature=bad):
                self.assertFalse(self.gateway.verify_signature('order_abc', 'pay_xyz', bad))

    def test_missing_secret_or_signature_never_verifies(self):
        self.assertFalse(RazorpayGateway('rzp_test_key', '').verify_signature('o', 'p', sign('o', 'p')))
        self.assertFalse(self.gateway.verify_signature('o', 'p', ''))

    def test_amount_is_converted_to_minor_units(self):
        self.assertEqual(to_minor_units(Decimal('4500')), 450000)
        self.assertEqual(to_minor_units(Decimal('4500.55')), 450055)
        self.assertEqual(to_minor_units(99.99), 9999)


class RazorpayGatewayTestCase(SimpleTestCase):
    """The adapter maps the order options onto the Razorpay client"""

    def test_create_order_passes_options_and_timeout(self):
        gateway = RazorpayGateway('rzp_test_key', SECRET, timeout=5)
        with mock.patch('hotel_booking.gateway.razorpay.Client') as client_cls:
            client_cls.return_value.order.create.return_value = {'id': 'order_1'}
            order = gateway.create_order(450000, 'INR', 'MG_1', {'bookingId': 'BK1'})

        self.assertEqual(order, {'id': 'order_1'})
        client_cls.assert_called_once_with(auth=('rzp_test_key', SECRET))
        client_cls.return_value.order.create.assert_called_once_with(
            data={'amount': 450000, 'currency': 'INR', 'receipt': 'MG_1', 'notes': {'bookingId': 'BK1'}},
            timeout=5,
        )

    def test_client_errors_surface_as_gateway_unavailable(self):
        gateway = RazorpayGateway('rzp_test_key', SECRET)
        with mock.patch('hotel_booking.gateway.razorpay.Client') as client_cls:
            client_cls.return_value.order.create.side_effect = razorpay.errors.ServerError('boom')
            with self.assertRaises(GatewayUnavailable):
                gateway.create_order(100, 'INR', 'MG_1', {})

    def test_missing_credentials_surface_as_gateway_unavailable(self):
        with self.assertRaises(GatewayUnavailable):
            RazorpayGateway('', '').create_order(100, 'INR', 'MG_1', {})


class CreateOrderTestCase(TestCase):
    """create_order checks inventory, opens a gateway order and stores a pending booking"""

    def setUp(self):
        set_inventory(standard=2, deluxe=0)
        self.gateway = FakeGateway()
        self.orchestrator = BookingOrchestrator(gateway=self.gateway)

    def test_create_order_persists_pending_booking(self):
        result = self.orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG100'))

        order = self.gateway.orders[0]
        self.assertEqual(result.booking_id, 'MG100')
        self.assertEqual(order['amount'], 450000)
        self.assertEqual(order['currency'], 'INR')
        self.assertTrue(order['receipt'].startswith('MG_'))
        self.assertEqual(order['notes'], {'bookingId': 'MG100', 'guestEmail': 'asha@example.com'})

        booking = Booking.objects.get(booking_id='MG100')
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.PENDING)
        self.assertEqual(booking.gateway_order_id, order['id'])
        self.assertFalse(booking.inventory_held)

        # Only checked, not taken
        self.assertEqual(available('standard'), 2)
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').bookings, 0)

    def test_booking_id_is_generated_when_missing(self):
        result = self.orchestrator.create_order(Decimal('4500'), booking_draft())

        self.assertTrue(result.booking_id.startswith('MG'))
        self.assertTrue(Booking.objects.filter(booking_id=result.booking_id).exists())

    def test_sold_out_room_type_is_rejected_before_gateway(self):
        with self.assertRaises(RoomUnavailable):
            self.orchestrator.create_order(Decimal('9000'), booking_draft(room_type='deluxe'))

        self.assertEqual(self.gateway.orders, [])
        self.assertFalse(Booking.objects.exists())

    def test_gateway_failure_creates_nothing(self):
        orchestrator = BookingOrchestrator(gateway=FakeGateway(fail=True))

        with self.assertRaises(GatewayUnavailable):
            orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG100'))

        self.assertFalse(Booking.objects.exists())
        self.assertFalse(Guest.objects.exists())

    def test_duplicate_booking_id_is_rejected(self):
        self.orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG100'))

        with self.assertRaises(DuplicateBookingId):
            self.orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG100'))

        self.assertEqual(Booking.objects.filter(booking_id='MG100').count(), 1)
        self.assertEqual(len(self.gateway.orders), 1)

    def test_store_failure_surfaces_as_store_unavailable(self):
        with mock.patch.object(RoomInventoryManager, 'available', side_effect=OperationalError('db down')):
            with self.assertRaises(StoreUnavailable):
                self.orchestrator.create_order(Decimal('4500'), booking_draft())


class VerifyPaymentTestCase(TestCase):
    """verify_payment confirms on a valid signature and fails the booking otherwise"""

    def setUp(self):
        set_inventory(standard=5)
        self.gateway = FakeGateway()
        self.orchestrator = BookingOrchestrator(gateway=self.gateway)

    def place_order(self, **draft):
        result = self.orchestrator.create_order(Decimal('4500'), booking_draft(**draft))
        return result.booking

    def pay(self, booking, payment_id='pay_001', signature=None):
        signature = signature if signature is not None else sign(booking.gateway_order_id, payment_id)
        return self.orchestrator.verify_payment(booking.gateway_order_id, payment_id, signature, booking.booking_id)

    def test_valid_signature_confirms_booking(self):
        booking = self.place_order()
        before = timezone.now()

        result = self.pay(booking)

        self.assertTrue(result.success)
        self.assertIsNone(result.code)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.COMPLETED)
        self.assertEqual(booking.gateway_payment_id, 'pay_001')
        self.assertEqual(booking.gateway_signature, sign(booking.gateway_order_id, 'pay_001'))
        self.assertTrue(booking.inventory_held)
        self.assertEqual(available('standard'), 4)

        guest = Guest.objects.get_by_email('asha@example.com')
        self.assertEqual(guest.bookings, 1)
        self.assertGreaterEqual(guest.last_booking, before)

    def test_mutated_signature_cancels_booking(self):
        for position in (0, 17, 40, 63):
            with self.subTest(position=position):
                booking = self.place_order()
                signature = mutate(sign(booking.gateway_order_id, 'pay_001'), position)

                result = self.pay(booking, signature=signature)

                self.assertFalse(result.success)
                self.assertEqual(result.code, 'PaymentVerificationFailed')
                booking.refresh_from_db()
                self.assertEqual(booking.status, Booking.Status.CANCELLED)
                self.assertEqual(booking.payment_status, Booking.PaymentStatus.FAILED)

        self.assertEqual(available('standard'), 5)
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').bookings, 0)

    def test_non_ascii_signature_cancels_booking(self):
        booking = self.place_order()
        signature = 'é' + sign(booking.gateway_order_id, 'pay_001')[1:]

        result = self.pay(booking, signature=signature)

        self.assertFalse(result.success)
        self.assertEqual(result.code, 'PaymentVerificationFailed')
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.FAILED)

    def test_signature_for_another_order_is_rejected(self):
        first = self.place_order(booking_id='MG1')
        second = self.place_order(booking_id='MG2')

        signature = sign(first.gateway_order_id, 'pay_001')
        result = self.orchestrator.verify_payment(first.gateway_order_id, 'pay_001', signature, second.booking_id)

        self.assertFalse(result.success)
        second.refresh_from_db()
        self.assertEqual(second.payment_status, Booking.PaymentStatus.FAILED)
        first.refresh_from_db()
        self.assertEqual(first.payment_status, Booking.PaymentStatus.PENDING)

    def test_valid_signature_for_unknown_booking_raises(self):
        with self.assertRaises(BookingNotFound):
            self.orchestrator.verify_payment('order_x', 'pay_x', sign('order_x', 'pay_x'), 'MG-missing')

    def test_invalid_signature_for_unknown_booking_returns_failure(self):
        result = self.orchestrator.verify_payment('order_x', 'pay_x', 'bad', 'MG-missing')

        self.assertFalse(result.success)
        self.assertIsNone(result.booking)

    def test_repeated_callback_does_not_double_count(self):
        booking = self.place_order()

        self.pay(booking)
        result = self.pay(booking)

        self.assertTrue(result.success)
        self.assertEqual(available('standard'), 4)
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').bookings, 1)

    def test_bad_callback_cannot_cancel_paid_booking(self):
        booking = self.place_order()
        self.pay(booking)

        result = self.pay(booking, signature='0' * 64)

        self.assertFalse(result.success)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.COMPLETED)
        self.assertEqual(available('standard'), 4)

    def test_guest_count_matches_confirmed_bookings(self):
        first = self.place_order(guest_email='Ravi@Example.com')
        second = self.place_order(guest_email='ravi@example.com')
        third = self.place_order(guest_email='RAVI@EXAMPLE.COM')

        self.pay(first, payment_id='pay_1')
        self.pay(second, payment_id='pay_2', signature='f' * 64)
        self.pay(third, payment_id='pay_3')

        self.assertEqual(Guest.objects.filter(email='ravi@example.com').count(), 1)
        confirmed = Booking.objects.for_email('ravi@example.com').filter(status=Booking.Status.CONFIRMED).count()
        self.assertEqual(confirmed, 2)
        self.assertEqual(Guest.objects.get_by_email('ravi@example.com').bookings, confirmed)

    def test_race_for_last_room_confirms_one_and_reports_shortfall(self):
        """Two orders pass the availability check; only one payment can take the room"""
        set_inventory(standard=1)

        first = self.place_order(booking_id='MG1', guest_email='one@example.com')
        second = self.place_order(booking_id='MG2', guest_email='two@example.com')

        first_result = self.pay(first, payment_id='pay_1')
        second_result = self.pay(second, payment_id='pay_2')

        self.assertTrue(first_result.success)
        self.assertIsNone(first_result.code)
        self.assertTrue(second_result.success)
        self.assertEqual(second_result.code, 'NoRoomsAvailable')
        self.assertEqual(available('standard'), 0)

        second.refresh_from_db()
        self.assertEqual(second.status, Booking.Status.CONFIRMED)
        self.assertFalse(second.inventory_held)

    def test_store_failure_surfaces_as_store_unavailable(self):
        booking = self.place_order()

        with mock.patch('hotel_booking.services._lock_booking', side_effect=OperationalError('db down')):
            with self.assertRaises(StoreUnavailable):
                self.pay(booking)


class CancelBookingTestCase(TestCase):
    """Cancelling returns a held room exactly once"""

    def setUp(self):
        set_inventory(standard=3)
        self.orchestrator = BookingOrchestrator(gateway=FakeGateway())

    def confirmed_booking(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking
        self.orchestrator.verify_payment(
            booking.gateway_order_id, 'pay_1', sign(booking.gateway_order_id, 'pay_1'), booking.booking_id
        )
        return booking

    def test_cancel_confirmed_booking_returns_one_room(self):
        booking = self.confirmed_booking()
        self.assertEqual(available('standard'), 2)

        cancelled = self.orchestrator.cancel_booking(booking.booking_id)

        self.assertEqual(cancelled.status, Booking.Status.CANCELLED)
        self.assertIsNotNone(cancelled.cancelled_date)
        self.assertEqual(available('standard'), 3)

    def test_second_cancel_does_not_increment_again(self):
        booking = self.confirmed_booking()

        first = self.orchestrator.cancel_booking(booking.booking_id)
        second = self.orchestrator.cancel_booking(booking.booking_id)

        self.assertEqual(available('standard'), 3)
        self.assertEqual(second.cancelled_date, first.cancelled_date)

    def test_cancel_pending_booking_leaves_inventory(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking

        self.orchestrator.cancel_booking(booking.booking_id)

        self.assertEqual(available('standard'), 3)

    def test_cancel_unknown_booking_raises(self):
        with self.assertRaises(BookingNotFound):
            self.orchestrator.cancel_booking('MG-missing')


@override_settings(BOOKING_HOLD_ON_ORDER=True, BOOKING_HOLD_TTL_MINUTES=30)
class InventoryHoldTestCase(TestCase):
    """With holds enabled the room is reserved when the order is created"""

    def setUp(self):
        set_inventory(standard=1)
        self.gateway = FakeGateway()
        self.orchestrator = BookingOrchestrator(gateway=self.gateway)

    def test_order_reserves_room(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking

        self.assertTrue(booking.inventory_held)
        self.assertEqual(available('standard'), 0)

        with self.assertRaises(RoomUnavailable):
            self.orchestrator.create_order(Decimal('4500'), booking_draft())

    def test_payment_does_not_take_a_second_room(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking

        result = self.orchestrator.verify_payment(
            booking.gateway_order_id, 'pay_1', sign(booking.gateway_order_id, 'pay_1'), booking.booking_id
        )

        self.assertTrue(result.success)
        self.assertIsNone(result.code)
        self.assertEqual(available('standard'), 0)

    def test_failed_payment_releases_room(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking

        self.orchestrator.verify_payment(booking.gateway_order_id, 'pay_1', 'bad', booking.booking_id)

        booking.refresh_from_db()
        self.assertFalse(booking.inventory_held)
        self.assertEqual(available('standard'), 1)

    def test_gateway_failure_releases_room(self):
        orchestrator = BookingOrchestrator(gateway=FakeGateway(fail=True))

        with self.assertRaises(GatewayUnavailable):
            orchestrator.create_order(Decimal('4500'), booking_draft())

        self.assertEqual(available('standard'), 1)

    def test_cancel_pending_hold_releases_room(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking

        self.orchestrator.cancel_booking(booking.booking_id)

        self.assertEqual(available('standard'), 1)

    def test_stale_holds_are_released(self):
        set_inventory(standard=2)
        stale = self.orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG-old')).booking
        fresh = self.orchestrator.create_order(Decimal('4500'), booking_draft(booking_id='MG-new')).booking
        Booking.objects.filter(pk=stale.pk).update(booking_date=timezone.now() - timedelta(hours=2))

        released = self.orchestrator.release_stale_holds()

        self.assertEqual(released, ['MG-old'])
        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Booking.Status.CANCELLED)
        self.assertEqual(fresh.status, Booking.Status.PENDING)
        self.assertEqual(available('standard'), 1)

    def test_release_command_reports_count(self):
        booking = self.orchestrator.create_order(Decimal('4500'), booking_draft()).booking
        Booking.objects.filter(pk=booking.pk).update(booking_date=timezone.now() - timedelta(hours=2))
        out = StringIO()

        with mock.patch('hotel_booking.services.get_gateway', return_value=self.gateway):
            call_command('release_stale_holds', minutes=60, stdout=out)

        self.assertIn('Released 1 stale hold(s)', out.getvalue())
        self.assertEqual(available('standard'), 1)


class DirectCreateTestCase(TestCase):
    """Admin / offline bookings that bypass the gateway"""

    def setUp(self):
        set_inventory(standard=2)
        self.orchestrator = BookingOrchestrator(gateway=FakeGateway())

    def test_confirmed_booking_for_known_guest_updates_history(self):
        Guest.objects.create(name='Asha Rao', email='asha@example.com', phone='1', bookings=3,
                             last_booking=timezone.now() - timedelta(days=30))
        before = timezone.now()

        booking = self.orchestrator.direct_create(booking_draft(status=Booking.Status.CONFIRMED,
                                                                guest_email='ASHA@example.com'))

        guest = Guest.objects.get_by_email('asha@example.com')
        self.assertEqual(guest.bookings, 4)
        self.assertGreaterEqual(guest.last_booking, before)
        self.assertTrue(booking.inventory_held)
        self.assertEqual(available('standard'), 1)

    def test_pending_booking_keeps_inventory_and_count(self):
        booking = self.orchestrator.direct_create(booking_draft())

        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(available('standard'), 2)
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').bookings, 0)

    def test_duplicate_booking_id_is_rejected(self):
        self.orchestrator.direct_create(booking_draft(booking_id='MG7'))

        with self.assertRaises(DuplicateBookingId):
            self.orchestrator.direct_create(booking_draft(booking_id='MG7'))

    def test_confirmed_booking_when_sold_out_is_kept_without_room(self):
        set_inventory(standard=0)

        booking = self.orchestrator.direct_create(booking_draft(status=Booking.Status.CONFIRMED))

        self.assertFalse(booking.inventory_held)
        self.assertEqual(available('standard'), 0)

        # Nothing was taken, so nothing is given back
        self.orchestrator.cancel_booking(booking.booking_id)
        self.assertEqual(available('standard'), 0)


class ConcurrentDecrementTestCase(TransactionTestCase):
    """Concurrent payments for the last room on a database with row locking"""

    # Skipped on SQLite. Run against PostgreSQL to exercise it:
    #   DATABASE_ENGINE=django.db.backends.postgresql DATABASE_NAME=... pytest -k concurrent
    @skipUnlessDBFeature('has_select_for_update')
    def test_concurrent_decrements_take_last_room_once(self):
        set_inventory(standard=1)

        def take_room():
            try:
                RoomInventory.objects.decrement('standard')
                return True
            except NoRoomsAvailable:
                return False
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=5) as executor:
            futures = [executor.submit(take_room) for _ in range(5)]
            results = [future.result() for future in as_completed(futures)]

        self.assertEqual(results.count(True), 1,
                         f"Expected exactly 1 successful decrement, got {results.count(True)}")
        self.assertEqual(available('standard'), 0)


@override_settings(RAZORPAY_KEY_ID='rzp_test_key', RAZORPAY_KEY_SECRET=SECRET)
class BookingApiTestCase(APITestCase):
    """HTTP surface around the booking core"""

    def setUp(self):
        set_inventory(standard=2, deluxe=0)
        self.gateway = FakeGateway()
        patcher = mock.patch('hotel_booking.services.get_gateway', return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.booking_data = {
            'guestName': 'Asha Rao',
            'guestEmail': 'Asha@Example.com',
            'guestPhone': '9876543210',
            'roomType': 'standard',
            'checkIn': str(date.today() + timedelta(days=1)),
            'checkOut': str(date.today() + timedelta(days=3)),
            'guests': 2,
            'roomPrice': '2250.00',
        }

    def authenticate(self):
        admin = get_user_model().objects.create_user(
            username='admin@example.com', email='admin@example.com', password='s3cret-pass', is_staff=True
        )
        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {issue_admin_token(admin)}')
        return admin

    def create_order(self, **overrides):
        payload = {'amount': 4500, 'bookingData': {**self.booking_data, **overrides}}
        return self.client.post('/api/payment/create-order', payload, format='json')

    def test_create_order_returns_order_and_booking_id(self):
        response = self.create_order(bookingId='MG42')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['bookingId'], 'MG42')
        self.assertEqual(response.data['order']['amount'], 450000)

        booking = Booking.objects.get(booking_id='MG42')
        self.assertEqual(booking.nights, 2)
        self.assertEqual(booking.total_amount, Decimal('4500.00'))
        self.assertEqual(booking.guest_email, 'asha@example.com')

    def test_create_order_for_sold_out_room(self):
        response = self.create_order(roomType='deluxe')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['message'], 'Room not available')

    def test_create_order_with_unknown_room_type(self):
        response = self.create_order(roomType='penthouse')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Booking.objects.exists())

    def test_create_order_rejects_checkout_before_checkin(self):
        response = self.create_order(checkOut=self.booking_data['checkIn'])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_order_when_gateway_is_down(self):
        self.gateway.fail = True

        response = self.create_order()

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['message'], 'Error creating order')

    def test_verify_payment_accepts_razorpay_field_names(self):
        booking_id = self.create_order().data['bookingId']
        order_id = self.gateway.orders[0]['id']

        response = self.client.post('/api/payment/verify-payment', {
            'razorpay_order_id': order_id,
            'razorpay_payment_id': 'pay_1',
            'razorpay_signature': sign(order_id, 'pay_1'),
            'bookingId': booking_id,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['booking']['status'], 'confirmed')
        self.assertEqual(response.data['booking']['paymentStatus'], 'completed')
        self.assertEqual(available('standard'), 1)

    def test_verify_payment_with_bad_signature(self):
        booking_id = self.create_order().data['bookingId']

        response = self.client.post('/api/payment/verify-payment', {
            'gateway_order_id': self.gateway.orders[0]['id'],
            'gateway_payment_id': 'pay_1',
            'gateway_signature': 'not-a-signature',
            'bookingId': booking_id,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['message'], 'Payment verification failed')
        self.assertEqual(Booking.objects.get(booking_id=booking_id).status, Booking.Status.CANCELLED)

    def test_verify_payment_for_unknown_booking(self):
        response = self.client.post('/api/payment/verify-payment', {
            'gateway_order_id': 'order_x',
            'gateway_payment_id': 'pay_x',
            'gateway_signature': sign('order_x', 'pay_x'),
            'bookingId': 'MG-missing',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['message'], 'Booking not found')

    def test_cancel_booking(self):
        booking_id = self.create_order().data['bookingId']

        response = self.client.put(f'/api/user/cancel-booking/{booking_id}')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['booking']['status'], 'cancelled')
        self.assertIsNotNone(response.data['booking']['cancelledDate'])

    def test_cancel_unknown_booking(self):
        response = self.client.put('/api/user/cancel-booking/MG-missing')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_direct_create_confirmed_booking(self):
        response = self.client.post('/api/bookings', {
            **self.booking_data, 'status': 'confirmed', 'paymentStatus': 'completed',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['booking']['status'], 'confirmed')
        self.assertEqual(available('standard'), 1)
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').bookings, 1)

    def test_user_bookings_match_email_case_insensitively(self):
        self.create_order(bookingId='MG1')
        self.create_order(bookingId='MG2', guestEmail='someone@example.com')

        response = self.client.get('/api/user/bookings/ASHA@example.com')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([b['bookingId'] for b in response.data['bookings']], ['MG1'])

    def test_update_profile_rewrites_bookings_and_guest(self):
        self.create_order(bookingId='MG1')

        response = self.client.put('/api/user/update-profile', {
            'email': 'ASHA@example.com', 'name': 'Asha R. Rao', 'phone': '9000000000',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Booking.objects.get(booking_id='MG1').guest_name, 'Asha R. Rao')
        self.assertEqual(Guest.objects.get_by_email('asha@example.com').phone, '9000000000')

    def test_admin_routes_require_token(self):
        for url in ('/api/bookings', '/api/guests', '/api/stats'):
            with self.subTest(url=url):
                response = self.client.get(url)
                self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        self.client.credentials(HTTP_AUTHORIZATION='Bearer garbage')
        response = self.client.get('/api/bookings')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_admin_login(self):
        self.authenticate()
        self.client.credentials()

        response = self.client.post('/api/admin/login', {
            'email': 'ADMIN@example.com', 'password': 's3cret-pass',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['token'])

        response = self.client.post('/api/admin/login', {
            'email': 'admin@example.com', 'password': 'wrong',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_admin_lists_bookings_and_guests(self):
        self.create_order(bookingId='MG1')
        self.create_order(bookingId='MG2')
        self.authenticate()

        bookings = self.client.get('/api/bookings')
        guests = self.client.get('/api/guests')

        self.assertEqual([b['bookingId'] for b in bookings.data['bookings']], ['MG2', 'MG1'])
        self.assertEqual(len(guests.data['guests']), 1)

    def test_rooms_are_public_to_read_and_admin_to_write(self):
        response = self.client.get('/api/rooms')
        self.assertEqual(response.data['rooms']['standard'], 2)

        response = self.client.put('/api/rooms', {'standard': 7, 'deluxe': 3, 'suite': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        self.authenticate()
        response = self.client.put('/api/rooms', {'standard': 7, 'deluxe': 3, 'suite': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(RoomInventory.objects.current().as_dict(), {'standard': 7, 'deluxe': 3, 'suite': 1})

    def test_stats(self):
        self.client.post('/api/bookings', {**self.booking_data, 'status': 'confirmed',
                                           'paymentStatus': 'completed'}, format='json')
        self.client.post('/api/bookings', {**self.booking_data, 'status': 'cancelled'}, format='json')
        self.authenticate()

        response = self.client.get('/api/stats')

        stats = response.data['stats']
        self.assertEqual(stats['totalBookings'], 2)
        self.assertEqual(stats['confirmedBookings'], 1)
        self.assertEqual(stats['cancelledBookings'], 1)
        self.assertEqual(Decimal(str(stats['totalRevenue'])), Decimal('4500.00'))

    def test_server_side_failures_are_logged_as_warnings(self):
        self.gateway.fail = True

        with self.assertLogs('hotel_booking.exceptions', level='INFO') as logs:
            self.create_order()
            self.client.put('/api/user/cancel-booking/MG-missing')

        levels = {record.args[1]: record.levelname for record in logs.records}
        self.assertEqual(levels, {'GatewayUnavailable': 'WARNING', 'BookingNotFound': 'INFO'})

    def test_database_failure_in_read_view_is_store_unavailable(self):
        with mock.patch.object(BookingQuerySet, 'for_email', side_effect=OperationalError('db down')):
            response = self.client.get('/api/user/bookings/asha@example.com')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data, {'success': False, 'message': 'Server error', 'code': 'StoreUnavailable'})

    def test_health_check(self):
        response = self.client.get('/health')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['roomAvailability']['standard'], 2)
        self.assertEqual(response.json()['razorpay'], 'configured')


class ManagementCommandTestCase(TestCase):

    def test_init_inventory_creates_row_once(self):
        out = StringIO()
        call_command('init_inventory', standard=4, stdout=out)
        self.assertEqual(RoomInventory.objects.current().as_dict(), {'standard': 4, 'deluxe': 8, 'suite': 5})

        call_command('init_inventory', standard=9, stdout=out)
        self.assertEqual(available('standard'), 4)

        call_command('init_inventory', standard=9, reset=True, stdout=out)
        self.assertEqual(available('standard'), 9)

    def test_ensure_admin_creates_staff_user(self):
        call_command('ensure_admin', email='Admin@Example.com', password='pw-123456', stdout=StringIO())
        call_command('ensure_admin', email='admin@example.com', password='pw-123456', stdout=StringIO())

        admins = get_user_model().objects.filter(is_staff=True)
        self.assertEqual(admins.count(), 1)
        self.assertTrue(admins.get().check_password('pw-123456'))
