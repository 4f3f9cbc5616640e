"""PhotoButler: asynchronous photo restyling service."""
