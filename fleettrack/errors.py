"""
Location-related error types
"""


class LocationError(Exception):
    """Base class for location errors"""

    recovery_suggestion = "Please try again"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PermissionDeniedError(LocationError):
    recovery_suggestion = "Enable location access for FleetTrack in the device settings"

    def __init__(self, message: str = "Location permission was denied"):
        super().__init__(message)


class LocationUnavailableError(LocationError):
    recovery_suggestion = "Enable Location Services on the device"

    def __init__(self, message: str = "Location services are unavailable"):
        super().__init__(message)


class InvalidCoordinateError(LocationError):
    recovery_suggestion = "Provide a latitude in [-90, 90] and a longitude in [-180, 180]"

    def __init__(self, message: str = "Invalid coordinate provided"):
        super().__init__(message)


class TripNotFoundError(LocationError):
    recovery_suggestion = "Check the trip id"

    def __init__(self, trip_id: str):
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found")


class InvalidVehicleIdError(LocationError):
    recovery_suggestion = "Use the vehicle's id as stored in the vehicles table"
