from django.core.management.base import BaseCommand

from hotel_booking.models import DEFAULT_ROOM_COUNTS, RoomInventory, RoomType


class Command(BaseCommand):
    help = 'Create the room inventory row (run once per deployment, after migrate)'

    def add_arguments(self, parser):
        for room_type in RoomType.values:
            parser.add_argument(
                f'--{room_type}',
                type=int,
                default=None,
                help=f'Rooms available for {room_type} (default {DEFAULT_ROOM_COUNTS[room_type]})',
            )
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Overwrite the counts of an existing inventory row',
        )

    def handle(self, *args, **options):
        requested = {
            room_type: options[room_type]
            for room_type in RoomType.values
            if options[room_type] is not None
        }
        for room_type, count in requested.items():
            if count < 0:
                self.stderr.write(self.style.ERROR(f'{room_type} count cannot be negative'))
                return

        exists = RoomInventory.objects.filter(pk=RoomInventory.SINGLETON_PK).exists()
        if exists and not options['reset']:
            inventory = RoomInventory.objects.current()
            self.stdout.write(f'Room inventory already exists: {inventory}')
            return

        counts = {room_type: requested.get(room_type, default)
                  for room_type, default in DEFAULT_ROOM_COUNTS.items()}
        inventory = RoomInventory.objects.set_counts(**counts)

        self.stdout.write(
            self.style.SUCCESS(f'Room inventory set: {inventory}')
        )
