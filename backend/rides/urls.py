from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Browsing & matching
    path('getRides', views.get_rides, name='get-rides'),
    path('bestRides', views.best_rides, name='best-rides'),
    path('myRequests', views.my_requests, name='my-requests'),
    path('myRides', views.my_rides, name='my-rides'),
    path('<int:ride_id>', views.ride_detail, name='ride-detail'),

    # Driver ride actions
    path('createRide', views.create_ride, name='create-ride'),
    path('<int:ride_id>/approval', views.approve_request, name='approve-request'),
    path('<int:ride_id>/removePassenger', views.remove_passenger, name='remove-passenger'),
    path('<int:ride_id>/cancel', views.cancel_ride, name='cancel-ride'),
    path('<int:ride_id>/complete', views.complete_ride, name='complete-ride'),

    # Rider ride actions
    path('<int:ride_id>/request', views.request_ride, name='request-ride'),
    path('<int:ride_id>/cancelRequest', views.cancel_request, name='cancel-request'),
]
