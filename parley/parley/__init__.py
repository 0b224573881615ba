"""Parley: team chat threads with an assistant grounded in channel documents."""
