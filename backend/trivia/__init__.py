"""Summit Trivia game backend."""
