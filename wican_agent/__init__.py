"""WiCAN Agent -- battery state relay for aa-proxy-rs.

Polls a WiCAN Pro over Bluetooth LE for the vehicle's state of charge,
converts it to remaining energy using the configured battery capacity
and POSTs the result to the aa-proxy-rs EV Logger endpoint.
"""

__version__ = "0.1.0"
