"""Business services for the return lifecycle."""
