from django.urls import path

from hotel_booking import views

urlpatterns = [
    path('admin/login', views.admin_login, name='admin-login'),
    path('payment/create-order', views.create_order, name='create-order'),
    path('payment/verify-payment', views.verify_payment, name='verify-payment'),
    path('bookings', views.BookingListView.as_view(), name='bookings'),
    path('user/bookings/<str:email>', views.user_bookings, name='user-bookings'),
    path('user/cancel-booking/<str:booking_id>', views.cancel_booking, name='cancel-booking'),
    path('user/update-profile', views.update_profile, name='update-profile'),
    path('guests', views.guest_list, name='guests'),
    path('rooms', views.RoomInventoryView.as_view(), name='rooms'),
    path('stats', views.stats, name='stats'),
]
