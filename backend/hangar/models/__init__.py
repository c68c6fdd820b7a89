from .accounts import User, Transaction
from .fleet import Aircraft, Component, ComponentRecalcJob
from .flights import FlightSubmission, ImageLog, Flight

__all__ = [
    'User', 'Transaction',
    'Aircraft', 'Component', 'ComponentRecalcJob',
    'FlightSubmission', 'ImageLog', 'Flight',
]
