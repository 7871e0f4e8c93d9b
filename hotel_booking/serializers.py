from decimal import Decimal

from rest_framework import serializers

from .models import Booking, Guest, RoomInventory, RoomType


class BookingSerializer(serializers.ModelSerializer):
    """Booking in the camelCase shape the web frontend sends and expects."""
    bookingId = serializers.CharField(source='booking_id', max_length=64, required=False)
    guestName = serializers.CharField(source='guest_name', max_length=150)
    guestEmail = serializers.EmailField(source='guest_email')
    guestPhone = serializers.CharField(source='guest_phone', max_length=50)
    roomType = serializers.ChoiceField(source='room_type', choices=RoomType.choices)
    checkIn = serializers.DateField(source='check_in')
    checkOut = serializers.DateField(source='check_out')
    guests = serializers.IntegerField(min_value=1, required=False)
    nights = serializers.IntegerField(min_value=1, required=False)
    roomPrice = serializers.DecimalField(source='room_price', max_digits=10, decimal_places=2, min_value=Decimal('0'))
    totalAmount = serializers.DecimalField(source='total_amount', max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    specialRequests = serializers.CharField(source='special_requests', allow_blank=True, required=False)
    paymentStatus = serializers.ChoiceField(source='payment_status', choices=Booking.PaymentStatus.choices, required=False)
    razorpayOrderId = serializers.CharField(source='gateway_order_id', read_only=True)
    razorpayPaymentId = serializers.CharField(source='gateway_payment_id', read_only=True)
    bookingDate = serializers.DateTimeField(source='booking_date', read_only=True)
    cancelledDate = serializers.DateTimeField(source='cancelled_date', read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'bookingId', 'guestName', 'guestEmail', 'guestPhone', 'roomType',
            'checkIn', 'checkOut', 'guests', 'nights', 'roomPrice', 'totalAmount',
            'status', 'paymentStatus', 'specialRequests', 'razorpayOrderId',
            'razorpayPaymentId', 'bookingDate', 'cancelledDate',
        ]
        read_only_fields = ['id']

    def validate(self, data):
        check_in = data.get('check_in')
        check_out = data.get('check_out')
        if check_in and check_out and check_out <= check_in:
            raise serializers.ValidationError("checkOut must be after checkIn")

        # Nights and total default to what the dates and nightly price imply
        if 'nights' not in data:
            data['nights'] = (check_out - check_in).days
        if 'total_amount' not in data:
            data['total_amount'] = data['room_price'] * data['nights']
        return data


class BookingDraftSerializer(BookingSerializer):
    """Booking data attached to a create-order request; status is set by the server."""
    paymentStatus = serializers.CharField(source='payment_status', read_only=True)

    class Meta(BookingSerializer.Meta):
        read_only_fields = ['id', 'status']


class CreateOrderSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    bookingData = BookingDraftSerializer()

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("amount must be positive")
        return value


class VerifyPaymentSerializer(serializers.Serializer):
    gateway_order_id = serializers.CharField()
    gateway_payment_id = serializers.CharField()
    gateway_signature = serializers.CharField()
    bookingId = serializers.CharField()

    def to_internal_value(self, data):
        # Razorpay Checkout hands back razorpay_* keys; accept them as-is
        if hasattr(data, 'copy'):
            data = data.copy()
            for name in ('order_id', 'payment_id', 'signature'):
                legacy = f'razorpay_{name}'
                if legacy in data and f'gateway_{name}' not in data:
                    data[f'gateway_{name}'] = data[legacy]
        return super().to_internal_value(data)


class UpdateProfileSerializer(serializers.Serializer):
    email = serializers.EmailField()
    name = serializers.CharField(max_length=150)
    phone = serializers.CharField(max_length=50, allow_blank=True)


class GuestSerializer(serializers.ModelSerializer):
    lastBooking = serializers.DateTimeField(source='last_booking', read_only=True)

    class Meta:
        model = Guest
        fields = ['id', 'name', 'email', 'phone', 'bookings', 'lastBooking']


class RoomInventorySerializer(serializers.ModelSerializer):
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = RoomInventory
        fields = ['standard', 'deluxe', 'suite', 'updatedAt']


class AdminLoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False)
