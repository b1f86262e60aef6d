"""Engine settings and cancellation primitives."""
