"""Exceptions raised by snaptop."""


class SnaptopError(Exception):
    """Base class for snaptop errors."""


class CounterUnavailable(SnaptopError):
    """The host metric subsystem could not be queried for this tick."""
