APP_TITLE = "DocGate"
APP_VERSION = "0.1.0"
API_VERSION = "v0"

DEFAULT_PORT = 3000
DEFAULT_AUTH_USERNAME = "admin"
DEFAULT_AUTH_PASSWORD = "password"
AUTH_REALM = "MongoDB API"

REQUEST_TIMEOUT_SECONDS = 10.0
SERVER_SELECTION_TIMEOUT_MS = 5000

# Plain reads may be served by secondaries; transactions always read from the primary.
DEFAULT_READ_PREFERENCE = "secondaryPreferred"
TRANSACTION_READ_PREFERENCE = "primary"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
REQUEST_ID_HEADER = "x-request-id"

PUBLIC_PATHS = ("/openapi.json", "/docs", "/docs/oauth2-redirect")
