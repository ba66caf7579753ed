"""Return record store, state machine and orchestration service."""
