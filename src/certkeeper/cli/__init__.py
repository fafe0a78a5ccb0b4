"""certkeeper command-line interface."""
