"""
Runtime configuration, loaded from environment variables.
"""

import os


LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

EVENT_HISTORY_SIZE = int(os.environ.get("EVENT_HISTORY_SIZE", "100"))

DEFAULT_THROUGHPUT_MBPS = float(os.environ.get("DEFAULT_THROUGHPUT_MBPS", "50"))
ADAPTER_SPEED_MBPS = float(os.environ.get("ADAPTER_SPEED_MBPS", "250"))

WS_HOST = os.environ.get("WS_HOST", "0.0.0.0")
WS_PORT = int(os.environ.get("WS_PORT", "8765"))
HEALTH_PORT = int(os.environ.get("HEALTH_PORT", "8766"))
TICK_RATE = float(os.environ.get("TICK_RATE", "10"))

MISSIONS_PATH = os.environ.get("MISSIONS_PATH", "config/missions")
