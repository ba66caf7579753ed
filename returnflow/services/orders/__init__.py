"""Order status synchronization for returns."""
