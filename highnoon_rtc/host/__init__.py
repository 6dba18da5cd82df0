"""Host role: room ownership and per-client negotiations."""
