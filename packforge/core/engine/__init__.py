"""Engine — cancellation, agent scope, broker, and platform pipelines."""
