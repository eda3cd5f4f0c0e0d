"""Configuration constants for the fixture HTTP server."""

HOST: str = "127.0.0.1"
PORT: int = 0
BUFFER_SIZE: int = 1024
READ_CHUNK_SIZE: int = 65_536
WRITE_CHUNK_SIZE: int = 65_536
SOCKET_TIMEOUT_SECS: float = 2.0
ACCEPT_TIMEOUT_SECS: float = 0.2
SHUTDOWN_TIMEOUT_SECS: float = 2.0
MAX_REQUEST_BYTES: int = 16_777_216
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 8_388_608
MAX_TARGET_LENGTH: int = 8_192
MAX_KEEPALIVE_REQUESTS: int = 1_000
WORKER_COUNT: int = 8
REQUEST_QUEUE_SIZE: int = 64
SERVER_NAME: str = "httpfixture"
LOG_FORMAT: str = "plain"

WILDCARD_METHOD: str = "*"
DEFAULT_METHOD: str = "GET"
DEFAULT_STATUS: int = 200
