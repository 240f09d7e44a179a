"""Word memory."""
