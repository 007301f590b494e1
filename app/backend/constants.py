STATUS_PENDING = "pending"
STATUS_ANALYZED = "analyzed"

SUBMISSION_KEY_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
SUBMISSION_KEY_LENGTH = 21

MAX_TOP_INVESTORS = 5
MAX_COLUMN_INT = 2**31 - 1
MAX_REQUEST_BYTES = 1024 * 1024
MAX_ERROR_CHARS = 1200
UNSET = object()
