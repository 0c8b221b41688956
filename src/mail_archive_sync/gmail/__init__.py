"""Gmail API client and message parsing."""
