"""TutorLink backend: campus peer-tutoring sessions and points settlement."""

__version__ = "0.1.0"
