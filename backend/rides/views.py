from django.conf import settings
from django.db.models import prefetch_related_objects
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from services import booking
from services.booking import queries
from services.matching import GeoPoint, find_best_rides
from .permissions import IsDriver, IsRider
from .serializers import (
    RideSerializer,
    RideCreateSerializer,
    ApprovalSerializer,
    PassengerIdSerializer,
    CompleteRideSerializer,
    BestRidesQuerySerializer,
    RideListQuerySerializer,
    MatchedRideSerializer,
    MyRequestSerializer,
    PassengerRequestSerializer,
)


def _ride_response(result, request, status_code=status.HTTP_200_OK):
    data = {
        'message': result.message,
        'ride': RideSerializer(result.ride, context={'viewer_id': request.user.id}).data,
    }
    if result.passenger_request is not None:
        data['request'] = PassengerRequestSerializer(result.passenger_request).data
    return Response(data, status=status_code)


# ==================== Browsing & Matching ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_rides(request):
    """Browse open rides with seat, price and text filters"""
    query = RideListQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    params = query.validated_data

    rides = queries.list_rides(
        min_seats=params.get('seats'),
        price_min=params.get('priceMin'),
        price_max=params.get('priceMax'),
        search=params.get('search', ''),
        creator_id=request.user.id if params.get('onlyMine') else None,
        ordering=params.get('ordering', 'departure'),
    )

    serializer = RideSerializer(rides, many=True, context={'viewer_id': request.user.id})
    return Response({'count': len(serializer.data), 'rides': serializer.data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def best_rides(request):
    """
    Rides whose pickup and dropoff are both near the rider's points

    Query params: pickupLat, pickupLng, dropoffLat, dropoffLng,
    maxDistance (meters, optional), limit (optional)
    """
    query = BestRidesQuerySerializer(
        data=request.query_params,
        context={'max_distance': settings.CARPOOL_MAX_MATCH_DISTANCE},
    )
    query.is_valid(raise_exception=True)
    params = query.validated_data

    matches = find_best_rides(
        GeoPoint(params['pickupLat'], params['pickupLng']),
        GeoPoint(params['dropoffLat'], params['dropoffLng']),
        params.get('maxDistance', settings.CARPOOL_DEFAULT_MATCH_DISTANCE),
        limit=params.get('limit'),
    )
    prefetch_related_objects([ride for ride, _ in matches], 'passengers__user')

    serializer = MatchedRideSerializer(matches, many=True, context={'viewer_id': request.user.id})
    return Response({'count': len(matches), 'rides': serializer.data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    """Ride detail; the creator also sees every passenger request"""
    ride = queries.get_ride(ride_id)
    return Response(RideSerializer(ride, context={'viewer_id': request.user.id}).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsRider])
def my_requests(request):
    """Every seat request the rider has made"""
    requests = queries.requests_for_user(request.user.id)
    serializer = MyRequestSerializer(requests, many=True, context={'viewer_id': request.user.id})
    return Response({'count': len(serializer.data), 'requests': serializer.data})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDriver])
def my_rides(request):
    """Every ride the driver has published, any status"""
    rides = queries.rides_for_creator(request.user.id)
    serializer = RideSerializer(rides, many=True, context={'viewer_id': request.user.id})
    return Response({'count': len(serializer.data), 'rides': serializer.data})


# ==================== Driver Ride Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def create_ride(request):
    """Publish a new ride"""
    serializer = RideCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = booking.create_ride(request.user, **serializer.to_command())
    return _ride_response(result, request, status.HTTP_201_CREATED)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def approve_request(request, ride_id):
    """
    Confirm or reject a pending seat request

    PUT Body:
    {
        "passengerId": <user id>,
        "status": "confirmed"  // or "rejected"
    }
    """
    serializer = ApprovalSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = booking.decide_request(
        request.user.id,
        ride_id,
        serializer.validated_data['passengerId'],
        serializer.validated_data['status'],
    )
    return _ride_response(result, request)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def remove_passenger(request, ride_id):
    """Cancel a confirmed passenger's seat (body: {"passengerId": <user id>})"""
    serializer = PassengerIdSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = booking.remove_passenger(request.user.id, ride_id, serializer.validated_data['passengerId'])
    return _ride_response(result, request)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def cancel_ride(request, ride_id):
    """Cancel the ride; every pending and confirmed passenger is cancelled too"""
    result = booking.cancel_ride(request.user.id, ride_id)
    return _ride_response(result, request)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_ride(request, ride_id):
    """Complete a departed ride (body: {"force": true} to complete early)"""
    serializer = CompleteRideSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = booking.complete_ride(request.user.id, ride_id, force=serializer.validated_data['force'])
    return _ride_response(result, request)


# ==================== Rider Ride Actions ====================

@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsRider])
def request_ride(request, ride_id):
    """Request a seat on a ride"""
    result = booking.request_ride(request.user, ride_id)
    return _ride_response(result, request, status.HTTP_201_CREATED)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsRider])
def cancel_request(request, ride_id):
    """Withdraw the rider's pending or confirmed request"""
    result = booking.cancel_request(request.user.id, ride_id)
    return _ride_response(result, request)
