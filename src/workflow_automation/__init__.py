"""
Workflow Automation Engine.

Trigger -> Condition -> Action graphs that are validated, activated and
executed whenever a matching business event occurs.
"""

__version__ = "0.1.0"
