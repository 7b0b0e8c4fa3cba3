"""Account-level computations: health, limits, projection."""
