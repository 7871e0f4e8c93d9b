from django.conf import settings
from django.core.management.base import BaseCommand

from hotel_booking.services import BookingOrchestrator


class Command(BaseCommand):
    help = 'Cancel unpaid bookings whose room hold has expired and return the rooms'

    def add_arguments(self, parser):
        parser.add_argument(
            '--minutes',
            type=int,
            default=settings.BOOKING_HOLD_TTL_MINUTES,
            help='Age after which a pending hold is released',
        )

    def handle(self, *args, **options):
        released = BookingOrchestrator().release_stale_holds(options['minutes'])
        for booking_id in released:
            self.stdout.write(f'Released hold for booking {booking_id}')

        self.stdout.write(
            self.style.SUCCESS(f'Released {len(released)} stale hold(s)')
        )
