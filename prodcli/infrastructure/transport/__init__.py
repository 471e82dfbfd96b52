"""Network transports implementing the domain Transport interface."""
