"""External service integrations: currency, extraction and storage."""
