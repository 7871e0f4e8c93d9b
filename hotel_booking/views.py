import logging

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.db.models import Sum
from django.http import JsonResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from .authentication import issue_admin_token
from .gateway import get_gateway
from .models import Booking, Guest, RoomInventory
from .serializers import (
    AdminLoginSerializer,
    BookingSerializer,
    CreateOrderSerializer,
    GuestSerializer,
    RoomInventorySerializer,
    UpdateProfileSerializer,
    VerifyPaymentSerializer,
)
from .services import BookingOrchestrator

logger = logging.getLogger(__name__)


def welcome(request):
    return JsonResponse({
        "message": "Hotel Booking API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "admin_login": "/api/admin/login",
            "user_bookings": "/api/user/bookings/<email>",
            "rooms": "/api/rooms",
        },
    })


def health_check(request):
    try:
        inventory = RoomInventory.objects.filter(pk=RoomInventory.SINGLETON_PK).first()
        stats = {
            "admins": get_user_model().objects.filter(is_staff=True).count(),
            "bookings": Booking.objects.count(),
            "guests": Guest.objects.count(),
        }
    except DatabaseError:
        logger.exception("Health check could not reach the database")
        return JsonResponse({"success": False, "database": "unavailable"}, status=503)

    return JsonResponse({
        "success": True,
        "status": "ok",
        "database": "connected",
        "razorpay": "configured" if get_gateway().configured else "not configured",
        "stats": stats,
        "roomAvailability": inventory.as_dict() if inventory else {"standard": 0, "deluxe": 0, "suite": 0},
    })


# -- admin ------------------------------------------------------------------

@api_view(['POST'])
@permission_classes([AllowAny])
def admin_login(request):
    serializer = AdminLoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    email = serializer.validated_data['email']

    admin = get_user_model().objects.filter(email__iexact=email, is_staff=True, is_active=True).first()
    if admin is None or not admin.check_password(serializer.validated_data['password']):
        logger.warning('Failed admin login for %s', email)
        return Response({'success': False, 'message': 'Invalid credentials'},
                        status=status.HTTP_401_UNAUTHORIZED)

    return Response({
        'success': True,
        'token': issue_admin_token(admin),
        'admin': {
            'email': admin.email,
            'name': admin.get_full_name() or admin.get_username(),
            'role': 'admin',
        },
    })


# -- payment ----------------------------------------------------------------

@api_view(['POST'])
def create_order(request):
    """Create a Razorpay order and the pending booking it pays for"""
    serializer = CreateOrderSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = BookingOrchestrator().create_order(
        serializer.validated_data['amount'],
        serializer.validated_data['bookingData'],
    )
    return Response({'success': True, 'order': result.order, 'bookingId': result.booking_id})


@api_view(['POST'])
def verify_payment(request):
    """Check the Razorpay callback signature and confirm or fail the booking"""
    serializer = VerifyPaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = BookingOrchestrator().verify_payment(
        data['gateway_order_id'],
        data['gateway_payment_id'],
        data['gateway_signature'],
        data['bookingId'],
    )
    if not result.success:
        return Response({'success': False, 'message': result.message, 'code': result.code})

    body = {'success': True, 'booking': BookingSerializer(result.booking).data}
    if result.warnings:
        body['code'] = result.code
        body['warnings'] = result.warnings
    return Response(body)


# -- bookings ---------------------------------------------------------------

class BookingListView(APIView):
    """All bookings for the admin panel; POST creates a booking directly, without payment."""

    def get_permissions(self):
        if self.request.method == 'GET':
            return [IsAdminUser()]
        return [AllowAny()]

    def get(self, request):
        bookings = Booking.objects.newest_first()
        return Response({'success': True, 'bookings': BookingSerializer(bookings, many=True).data})

    def post(self, request):
        serializer = BookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = BookingOrchestrator().direct_create(serializer.validated_data)
        return Response({'success': True, 'booking': BookingSerializer(booking).data},
                        status=status.HTTP_201_CREATED)


@api_view(['GET'])
def user_bookings(request, email):
    """Get bookings by guest email"""
    bookings = Booking.objects.for_email(email).newest_first()
    return Response({'success': True, 'bookings': BookingSerializer(bookings, many=True).data})


@api_view(['PUT'])
def cancel_booking(request, booking_id):
    booking = BookingOrchestrator().cancel_booking(booking_id)
    return Response({'success': True, 'booking': BookingSerializer(booking).data})


@api_view(['PUT'])
def update_profile(request):
    serializer = UpdateProfileSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    BookingOrchestrator().update_guest_profile(data['email'], data['name'], data['phone'])
    return Response({'success': True, 'message': 'Profile updated successfully'})


# -- guests, rooms, stats ---------------------------------------------------

@api_view(['GET'])
@permission_classes([IsAdminUser])
def guest_list(request):
    guests = Guest.objects.order_by('-last_booking')
    return Response({'success': True, 'guests': GuestSerializer(guests, many=True).data})


class RoomInventoryView(APIView):

    def get_permissions(self):
        if self.request.method == 'PUT':
            return [IsAdminUser()]
        return [AllowAny()]

    def get(self, request):
        return Response({'success': True, 'rooms': RoomInventorySerializer(RoomInventory.objects.current()).data})

    def put(self, request):
        serializer = RoomInventorySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = RoomInventory.objects.set_counts(**serializer.validated_data)
        logger.info('Room inventory set to %s by %s', inventory, request.user)
        return Response({'success': True, 'rooms': RoomInventorySerializer(inventory).data})


@api_view(['GET'])
@permission_classes([IsAdminUser])
def stats(request):
    bookings = Booking.objects.all()
    revenue = bookings.filter(
        status=Booking.Status.CONFIRMED,
        payment_status=Booking.PaymentStatus.COMPLETED,
    ).aggregate(total=Sum('total_amount'))['total']

    return Response({
        'success': True,
        'stats': {
            'totalBookings': bookings.count(),
            'confirmedBookings': bookings.filter(status=Booking.Status.CONFIRMED).count(),
            'cancelledBookings': bookings.filter(status=Booking.Status.CANCELLED).count(),
            'totalRevenue': revenue or 0,
        },
    })
