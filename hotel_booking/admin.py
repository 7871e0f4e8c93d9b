from django.contrib import admin

from .models import Booking, Guest, RoomInventory


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('booking_id', 'guest_name', 'guest_email', 'room_type', 'check_in',
                    'check_out', 'total_amount', 'status', 'payment_status', 'booking_date')
    list_filter = ('status', 'payment_status', 'room_type')
    search_fields = ('booking_id', 'guest_email', 'guest_name', 'gateway_order_id')
    readonly_fields = ('gateway_order_id', 'gateway_payment_id', 'gateway_signature',
                       'inventory_held', 'guest_counted', 'booking_date', 'cancelled_date')


@admin.register(Guest)
class GuestAdmin(admin.ModelAdmin):
    list_display = ('email', 'name', 'phone', 'bookings', 'last_booking')
    search_fields = ('email', 'name')


@admin.register(RoomInventory)
class RoomInventoryAdmin(admin.ModelAdmin):
    list_display = ('standard', 'deluxe', 'suite', 'updated_at')
