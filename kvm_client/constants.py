# =============================================================================
# KVM Client -- Protocol Constants
# =============================================================================
#
# Endpoint paths and timings match the device's bundled web UI.
# =============================================================================

CLIENT_VERSION = "0.4.0"

# -- Endpoints -----------------------------------------------------------------

INPUT_WS_PATH = "/ws/input"
VIDEO_STREAM_PATH = "/video.mjpg"
LATENCY_PATH = "/api/latency-test"

# -- Session (seconds) ---------------------------------------------------------

RECONNECT_DELAY = 2.0
CONNECTION_TIMEOUT = 10.0

# -- Stream watchdog (seconds) ------------------------------------------------

STREAM_RECONNECT_DELAY = 1.0
STREAM_STALL_TIMEOUT = 10.0
STREAM_CHECK_INTERVAL = 5.0

# -- Latency probe -------------------------------------------------------------

PROBE_INTERVAL = 3.0
PROBE_TIMEOUT = 5.0
LATENCY_GOOD_MS = 50.0
LATENCY_WARNING_MS = 100.0

# -- Input ---------------------------------------------------------------------

ABSOLUTE_MAX = 32767

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB
MAX_JPEG_FRAME = 8_388_608  # 8 MB

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
WS_CLOSE_GOING_AWAY = 1001
