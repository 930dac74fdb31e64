from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from services.booking.queries import ride_summary
from services.matching import GeoPoint
from .models import Ride, PassengerRequest


class LocationSerializer(serializers.Serializer):
    """
    GeoJSON point as sent by the ride forms.

    Expected body:
    {
        "type": "Point",
        "coordinates": [<longitude>, <latitude>],
        "address": "optional display text"
    }
    """
    type = serializers.ChoiceField(choices=["Point"], default="Point")
    coordinates = serializers.ListField(
        child=serializers.FloatField(),
        min_length=2,
        max_length=2,
    )
    address = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_coordinates(self, value):
        longitude, latitude = value
        if not -180 <= longitude <= 180:
            raise serializers.ValidationError("Longitude must be between -180 and 180.")
        if not -90 <= latitude <= 90:
            raise serializers.ValidationError("Latitude must be between -90 and 90.")
        return value

    def to_point(self, data) -> GeoPoint:
        longitude, latitude = data["coordinates"]
        return GeoPoint(latitude=latitude, longitude=longitude, address=data.get("address", ""))


class RideCreateSerializer(serializers.Serializer):
    """Input for publishing a ride (field names follow the ride form)."""
    pickupLocation = LocationSerializer()
    dropoffLocation = LocationSerializer()
    time = serializers.DateTimeField()
    seatsAvailable = serializers.IntegerField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    smokingAllowed = serializers.BooleanField(default=False)
    petsAllowed = serializers.BooleanField(default=False)
    alcoholAllowed = serializers.BooleanField(default=False)
    genderPreference = serializers.ChoiceField(
        choices=[choice for choice, _ in Ride.GENDER_PREFERENCE_CHOICES],
        default="any",
    )
    carModel = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    carNumber = serializers.CharField(required=False, allow_blank=True, default="", max_length=20)

    def to_command(self):
        """Keyword arguments for ``services.booking.create_ride``."""
        data = self.validated_data
        location = LocationSerializer()
        return {
            "pickup": location.to_point(data["pickupLocation"]),
            "dropoff": location.to_point(data["dropoffLocation"]),
            "departure_time": data["time"],
            "total_seats": data["seatsAvailable"],
            "price": data["price"],
            "preferences": {
                "smoking_allowed": data["smokingAllowed"],
                "pets_allowed": data["petsAllowed"],
                "alcohol_allowed": data["alcoholAllowed"],
                "gender_preference": data["genderPreference"],
                "car_model": data["carModel"],
                "car_number": data["carNumber"],
            },
        }


class PassengerIdSerializer(serializers.Serializer):
    passengerId = serializers.IntegerField()


class ApprovalSerializer(PassengerIdSerializer):
    status = serializers.ChoiceField(
        choices=[PassengerRequest.STATUS_CONFIRMED, PassengerRequest.STATUS_REJECTED]
    )


class CompleteRideSerializer(serializers.Serializer):
    force = serializers.BooleanField(default=False)


class BestRidesQuerySerializer(serializers.Serializer):
    pickupLat = serializers.FloatField(min_value=-90, max_value=90)
    pickupLng = serializers.FloatField(min_value=-180, max_value=180)
    dropoffLat = serializers.FloatField(min_value=-90, max_value=90)
    dropoffLng = serializers.FloatField(min_value=-180, max_value=180)
    maxDistance = serializers.FloatField(min_value=0, required=False)
    limit = serializers.IntegerField(min_value=1, required=False)

    def validate_maxDistance(self, value):
        upper = self.context.get("max_distance")
        if upper is not None and value > upper:
            raise serializers.ValidationError(f"maxDistance cannot exceed {upper} meters.")
        return value


class RideListQuerySerializer(serializers.Serializer):
    seats = serializers.IntegerField(min_value=1, required=False)
    priceMin = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    priceMax = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    search = serializers.CharField(required=False, allow_blank=True, default="")
    onlyMine = serializers.BooleanField(required=False, default=False)
    ordering = serializers.ChoiceField(
        choices=["departure", "-departure", "price", "-price", "seats", "-seats"],
        required=False,
        default="departure",
    )


class PassengerRequestSerializer(serializers.ModelSerializer):
    """A seat request as seen inside a ride"""
    user = UserBasicSerializer(read_only=True)

    class Meta:
        model = PassengerRequest
        fields = ['id', 'user', 'status', 'requested_at', 'decided_at', 'cancelled_at']
        read_only_fields = fields


def _location(latitude, longitude, address):
    return {
        "type": "Point",
        "coordinates": [float(longitude), float(latitude)],
        "address": address,
    }


class RideSerializer(serializers.ModelSerializer):
    """
    Ride with derived seat counts.

    Pass ``viewer_id`` in the context to get the viewer's own request status;
    the passenger list is only included for the ride's creator.
    """
    creator = UserBasicSerializer(read_only=True)
    pickup = serializers.SerializerMethodField()
    dropoff = serializers.SerializerMethodField()
    preferences = serializers.DictField(read_only=True)
    seats = serializers.SerializerMethodField()
    passengers = serializers.SerializerMethodField()

    class Meta:
        model = Ride
        fields = ['id', 'creator', 'pickup', 'dropoff', 'departure_time', 'total_seats',
                  'price', 'car_model', 'car_number', 'preferences', 'status', 'seats',
                  'passengers', 'created_at', 'completed_at', 'cancelled_at']
        read_only_fields = fields

    def get_pickup(self, obj):
        return _location(obj.pickup_latitude, obj.pickup_longitude, obj.pickup_address)

    def get_dropoff(self, obj):
        return _location(obj.dropoff_latitude, obj.dropoff_longitude, obj.dropoff_address)

    def get_seats(self, obj):
        summary = ride_summary(obj, self.context.get("viewer_id"))
        return {
            "available": summary.available_seats,
            "confirmed": summary.confirmed_count,
            "pending": summary.pending_count,
            "my_request_status": summary.viewer_status,
        }

    def get_passengers(self, obj):
        if self.context.get("viewer_id") != obj.creator_id:
            return None
        return PassengerRequestSerializer(obj.passengers.all(), many=True).data


class MatchedRideSerializer(serializers.Serializer):
    """A ride paired with its proximity score from best-ride matching."""

    def to_representation(self, instance):
        ride, match = instance
        data = RideSerializer(ride, context=self.context).data
        data["match"] = {
            "pickup_distance": round(match.pickup_distance, 1),
            "dropoff_distance": round(match.dropoff_distance, 1),
            "total_distance": round(match.total_distance, 1),
        }
        return data


class MyRequestSerializer(serializers.ModelSerializer):
    """A rider's own request with the ride it targets"""
    ride = serializers.SerializerMethodField()

    class Meta:
        model = PassengerRequest
        fields = ['id', 'status', 'requested_at', 'decided_at', 'cancelled_at', 'ride']
        read_only_fields = fields

    def get_ride(self, obj):
        return RideSerializer(obj.ride, context=self.context).data
