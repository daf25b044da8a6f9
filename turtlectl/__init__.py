"""
turtlectl
=========

Corridor-steering controller for a simulated two-turtle environment.
On start it removes one turtle, spawns the turtle it controls, and then answers every
pose update of that turtle with a velocity command that keeps it bouncing between two x bounds.

"""

__version__ = "0.1.0"
