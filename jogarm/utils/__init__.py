"""Small helpers shared by the jog loops."""
