"""Admin command line for the assessment engine."""
