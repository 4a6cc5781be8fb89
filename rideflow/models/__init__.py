from rideflow.models.driver import Driver
from rideflow.models.ride import Ride
from rideflow.models.vehicle import Vehicle

__all__ = ["Driver", "Ride", "Vehicle"]
