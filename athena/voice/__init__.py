"""Voice interaction: speech output, recognition and the state machine."""
