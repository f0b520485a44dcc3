VERSION = "1.0.0"
BUILD_TIMESTAMP = "unknown"
