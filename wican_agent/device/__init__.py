"""WiCAN device transport layer.

Provides ``DeviceTransport`` ABC with two concrete implementations:

* ``SimulationTransport`` -- fixture-based, no hardware required.
* ``BleTransport``        -- wraps bleak (lazy-imported).
"""

from wican_agent.device.base import DeviceTransport

__all__ = ["DeviceTransport"]
