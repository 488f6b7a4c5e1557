"""Handback validation gate.

An executor receives a work order (criteria plus authorized files) and returns
an outcome report. The gate scores the report with six independent checks
and suggests the ticket's next status; rejection is a normal result, not an
error.
"""
