"""Host-facing message bus for the agent core."""
