"""MQTT ingestion de lecturas de dispositivos.

Estructura modular:
- validators.py: decode + validación de payloads
- processor.py: persistencia de lecturas válidas
- async_processor.py: cola acotada + workers
- receiver.py: receptor MQTT principal
"""

from .processor import ProcessOutcome, ReadingProcessor
from .async_processor import AsyncReadingProcessor
from .receiver import MQTTReceiver, ReceiverStats
from .validators import decode_reading, validate_reading

__all__ = [
    "ProcessOutcome",
    "ReadingProcessor",
    "AsyncReadingProcessor",
    "MQTTReceiver",
    "ReceiverStats",
    "decode_reading",
    "validate_reading",
]
