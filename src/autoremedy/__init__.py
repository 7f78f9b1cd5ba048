"""autoremedy - self-healing build and deploy repair pipeline.

Classifies build tool output against a registry of known failure signatures,
applies ranked remediations, remembers which ones worked, and escalates to a
human once the bounded retry budget is spent.
"""

__version__ = "0.1.0"
