"""Calendar feed fetching, recurrence expansion and window resolution."""
