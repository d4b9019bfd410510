"""Learning-content processing backend."""
