"""Pure dispatch logic: status mapping, urgency, ranking, transitions and assignment."""
