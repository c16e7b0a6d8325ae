"""Signal rule families and the derivation engine."""
