"""Jog server: shared state, worker loops and the UDP front end."""
