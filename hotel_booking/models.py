from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F
from django.utils import timezone

from .exceptions import NoRoomsAvailable, UnknownRoomType


def normalize_email(email):
    return (email or '').strip().lower()


class RoomType(models.TextChoices):
    STANDARD = "standard"
    DELUXE = "deluxe"
    SUITE = "suite"


DEFAULT_ROOM_COUNTS = {
    RoomType.STANDARD: 10,
    RoomType.DELUXE: 8,
    RoomType.SUITE: 5,
}


class RoomInventoryManager(models.Manager):
    """Single-row store of rooms available per room type.

    Counts are only changed through conditional UPDATE statements so that the
    read-modify-write happens inside the database and concurrent requests can
    never push a count below zero.
    """

    def current(self):
        # The row is created by ``manage.py init_inventory`` at deployment;
        # this fallback only covers a database that skipped that step.
        inventory, _ = self.get_or_create(pk=RoomInventory.SINGLETON_PK)
        return inventory

    def available(self, room_type):
        column = RoomInventory.column_for(room_type)
        return getattr(self.current(), column)

    def decrement(self, room_type):
        column = RoomInventory.column_for(room_type)
        self.current()
        updated = self.filter(
            pk=RoomInventory.SINGLETON_PK, **{f'{column}__gt': 0}
        ).update(**{column: F(column) - 1, 'updated_at': timezone.now()})
        if not updated:
            raise NoRoomsAvailable()
        return self._read(column)

    def increment(self, room_type):
        column = RoomInventory.column_for(room_type)
        self.current()
        self.filter(pk=RoomInventory.SINGLETON_PK).update(
            **{column: F(column) + 1, 'updated_at': timezone.now()}
        )
        return self._read(column)

    def set_counts(self, **counts):
        for room_type in counts:
            RoomInventory.column_for(room_type)
        inventory, _ = self.update_or_create(
            pk=RoomInventory.SINGLETON_PK,
            defaults={**counts, 'updated_at': timezone.now()},
        )
        return inventory

    def _read(self, column):
        return self.filter(pk=RoomInventory.SINGLETON_PK).values_list(column, flat=True).get()


class RoomInventory(models.Model):
    SINGLETON_PK = 1

    standard = models.PositiveIntegerField(default=DEFAULT_ROOM_COUNTS[RoomType.STANDARD])
    deluxe = models.PositiveIntegerField(default=DEFAULT_ROOM_COUNTS[RoomType.DELUXE])
    suite = models.PositiveIntegerField(default=DEFAULT_ROOM_COUNTS[RoomType.SUITE])
    updated_at = models.DateTimeField(default=timezone.now)

    objects = RoomInventoryManager()

    class Meta:
        verbose_name_plural = "room inventory"

    @staticmethod
    def column_for(room_type):
        if room_type not in RoomType.values:
            raise UnknownRoomType(f"Unknown room type: {room_type}")
        return str(room_type)

    def as_dict(self):
        return {room_type: getattr(self, room_type) for room_type in RoomType.values}

    def __str__(self):
        return ", ".join(f"{k}={v}" for k, v in self.as_dict().items())


class GuestManager(models.Manager):

    def get_by_email(self, email):
        return self.filter(email=normalize_email(email)).first()

    def record_booking(self, booking, confirmed):
        """Create the guest on first sight and count ``booking`` once it is confirmed.

        Must run inside the caller's transaction with ``booking`` locked.
        Returns the guest row.
        """
        email = normalize_email(booking.guest_email)
        now = timezone.now()
        guest, created = self.select_for_update().get_or_create(
            email=email,
            defaults=dict(
                name=booking.guest_name,
                phone=booking.guest_phone,
                bookings=0,
                last_booking=now,
            ),
        )
        if not confirmed or booking.guest_counted:
            return guest

        self.filter(pk=guest.pk).update(bookings=F('bookings') + 1, last_booking=now)
        booking.guest_counted = True
        booking.save(update_fields=['guest_counted'])
        guest.refresh_from_db()
        return guest

    def update_profile(self, email, name, phone):
        return self.filter(email=normalize_email(email)).update(name=name, phone=phone)


class Guest(models.Model):
    name = models.CharField(max_length=150)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=50, blank=True)
    bookings = models.PositiveIntegerField(default=0)
    last_booking = models.DateTimeField(null=True, blank=True)

    objects = GuestManager()

    class Meta:
        ordering = ['-last_booking']

    def save(self, *args, **kwargs):
        self.email = normalize_email(self.email)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} <{self.email}>"


class BookingQuerySet(models.QuerySet):

    def for_email(self, email):
        return self.filter(guest_email=normalize_email(email))

    def newest_first(self):
        return self.order_by('-booking_date')

    def stale_holds(self, older_than):
        return self.filter(
            status=Booking.Status.PENDING,
            inventory_held=True,
            booking_date__lt=older_than,
        )


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        COMPLETED = "completed"
        FAILED = "failed"

    booking_id = models.CharField(max_length=64, unique=True)
    guest_name = models.CharField(max_length=150)
    guest_email = models.EmailField(db_index=True)
    guest_phone = models.CharField(max_length=50)
    room_type = models.CharField(max_length=20, choices=RoomType.choices)
    check_in = models.DateField()
    check_out = models.DateField()  # exclusive
    guests = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    nights = models.PositiveIntegerField()
    room_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    special_requests = models.TextField(blank=True)
    gateway_order_id = models.CharField(max_length=100, blank=True, db_index=True)
    gateway_payment_id = models.CharField(max_length=100, blank=True)
    gateway_signature = models.CharField(max_length=256, blank=True)
    inventory_held = models.BooleanField(default=False)
    guest_counted = models.BooleanField(default=False)
    booking_date = models.DateTimeField(default=timezone.now)
    cancelled_date = models.DateTimeField(null=True, blank=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ['-booking_date']

    def save(self, *args, **kwargs):
        self.guest_email = normalize_email(self.guest_email)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.booking_id} ({self.room_type}, {self.status}/{self.payment_status})"
