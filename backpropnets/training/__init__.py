"""Loss functions, metrics and training loops."""
