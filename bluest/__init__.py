"""Client library for BlueST sensor nodes over Bluetooth Low Energy."""

__version__ = "0.1.0"
