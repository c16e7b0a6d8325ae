"""Technical indicator calculators."""
