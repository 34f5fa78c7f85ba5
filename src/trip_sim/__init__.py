"""Vehicle trip telemetry simulator.

Simulates engine speed, road speed, fuel level, engine temperature,
GPS position and intermittent diagnostic trouble codes for a single
bounded trip, and hands each reading to a telemetry publisher.
"""

__version__ = "0.1.0"
